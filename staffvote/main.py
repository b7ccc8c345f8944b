import logging
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .auth import ensure_default_admin
from .config import Settings, settings as default_settings
from .exceptions import ServiceError, StorageError
from .routers import auth as auth_router, campaigns, staff, votes
from .services import Clock, StaffService
from .stores import Stores, build_stores
from .timeutils import utcnow

logger = logging.getLogger(__name__)

SAMPLE_STAFF = [
    ("EMP001", "1234", "Sarah Johnson", "Server", "Front of House", "sarah@example.com", "555-0101"),
    ("EMP002", "5678", "Michael Chen", "Chef", "Kitchen", "michael@example.com", "555-0102"),
    ("EMP003", "9012", "Emily Rodriguez", "Hostess", "Front of House", "emily@example.com", "555-0103"),
    ("EMP004", "3456", "David Kim", "Sous Chef", "Kitchen", "david@example.com", "555-0104"),
    ("EMP005", "7890", "Lisa Thompson", "Bartender", "Bar", "lisa@example.com", "555-0105"),
]


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


def seed_sample_staff(stores: Stores) -> None:
    """Fill an empty roster with a handful of demo staff members."""
    if stores.staff.stats().total_staff:
        return
    service = StaffService(stores.staff)
    for staff_id, pin, name, position, department, email, phone in SAMPLE_STAFF:
        service.create(staff_id, pin, name, position, department, email=email, phone=phone)
    logger.info("Sample staff data inserted")


def create_app(
    settings: Optional[Settings] = None,
    stores: Optional[Stores] = None,
    clock: Clock = utcnow,
) -> FastAPI:
    settings = settings or default_settings
    configure_logging(settings.LOG_LEVEL)

    # --- Lifecycle ---
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        ensure_default_admin(app.state.stores, settings)
        if settings.SEED_SAMPLE_STAFF:
            seed_sample_staff(app.state.stores)
        logger.info(f"{settings.PROJECT_NAME} ready")
        yield
        app.state.stores.close()
        logger.info("Application shutdown")

    app = FastAPI(title=settings.PROJECT_NAME, version="1.0.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.stores = stores or build_stores(settings)
    app.state.clock = clock

    # --- Middleware ---
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.BACKEND_CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # --- Error mapping ---
    @app.exception_handler(ServiceError)
    async def service_error_handler(request: Request, exc: ServiceError):
        if isinstance(exc, StorageError):
            logger.error(f"Storage failure on {request.method} {request.url.path}", exc_info=exc)
        return JSONResponse(
            status_code=exc.status_code,
            content={"success": False, "message": exc.message},
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={
                "success": False,
                "message": "Invalid request",
                "errors": jsonable_encoder(exc.errors()),
            },
        )

    # --- Routers ---
    app.include_router(auth_router.router)
    app.include_router(staff.router)
    app.include_router(campaigns.router)
    app.include_router(votes.router)

    # --- Root endpoint ---
    @app.get("/", tags=["Health"])
    def root():
        return {
            "message": f"{settings.PROJECT_NAME} is running",
            "backend": settings.DATABASE_BACKEND,
            "docs_url": "/docs",
        }

    return app


# --- Run with uvicorn (dev only) ---
if __name__ == "__main__":
    uvicorn.run("staffvote.main:create_app", factory=True, host="0.0.0.0", port=8000, reload=True)
