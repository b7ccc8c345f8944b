# staffvote/routers/auth.py
import logging

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.security import OAuth2PasswordRequestForm

from .. import auth as auth_utils, schemas
from ..config import Settings
from ..dependencies import get_current_user, get_settings, get_stores
from ..stores import Stores

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["Auth"])


@router.post("/admin/login", response_model=schemas.Token)
def admin_login(
    form_data: OAuth2PasswordRequestForm = Depends(),
    stores: Stores = Depends(get_stores),
    settings: Settings = Depends(get_settings),
):
    """
    Login an administrator.
    Accepts form-data with `username` and `password`.
    """
    admin = auth_utils.authenticate_admin(stores, form_data.username, form_data.password)
    if not admin:
        logger.warning(f"Failed admin login for {form_data.username!r}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    access_token = auth_utils.create_access_token(settings, subject=admin.username, role="admin")
    logger.info(f"Admin {admin.username} logged in")
    return schemas.Token(access_token=access_token, token_type="bearer", user=admin)


@router.post("/staff/login", response_model=schemas.Token)
def staff_login(
    credentials: schemas.StaffLogin,
    stores: Stores = Depends(get_stores),
    settings: Settings = Depends(get_settings),
):
    """Login a staff member with staff ID and 4-digit PIN."""
    staff = auth_utils.authenticate_staff(stores, credentials.staff_id, credentials.pin)
    if not staff:
        logger.warning(f"Failed staff login for {credentials.staff_id!r}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid staff ID or PIN",
            headers={"WWW-Authenticate": "Bearer"},
        )

    access_token = auth_utils.create_access_token(
        settings, subject=staff.staff_id, role="staff", name=staff.name
    )
    logger.info(f"Staff {staff.staff_id} logged in")
    return schemas.Token(access_token=access_token, token_type="bearer", user=staff)


@router.get("/me", response_model=schemas.Principal)
def read_me(current_user: schemas.Principal = Depends(get_current_user)):
    """Get the identity carried by the current token"""
    return current_user
