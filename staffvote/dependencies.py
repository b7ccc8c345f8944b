from fastapi import Depends, HTTPException, Request, status

from . import auth, schemas
from .config import Settings
from .services import CampaignService, StaffService, VoteService
from .stores import Stores


# Stores and settings are built once by create_app and kept on app.state
def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_stores(request: Request) -> Stores:
    return request.app.state.stores


def get_campaign_service(request: Request) -> CampaignService:
    stores = get_stores(request)
    return CampaignService(stores.campaigns, stores.votes, clock=request.app.state.clock)


def get_vote_service(request: Request) -> VoteService:
    stores = get_stores(request)
    return VoteService(stores.campaigns, stores.staff, stores.votes, clock=request.app.state.clock)


def get_staff_service(request: Request) -> StaffService:
    return StaffService(get_stores(request).staff)


# Extract current principal from JWT
def get_current_user(
    token: str = Depends(auth.oauth2_scheme),
    settings: Settings = Depends(get_settings),
) -> schemas.Principal:
    return auth.decode_token(settings, token)


# Role-based access
def require_role(*roles: str):
    def inner(user: schemas.Principal = Depends(get_current_user)) -> schemas.Principal:
        if user.role not in roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"{' or '.join(r.capitalize() for r in roles)} access required",
            )
        return user
    return inner
