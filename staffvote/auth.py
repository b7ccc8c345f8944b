# staffvote/auth.py
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import jwt, JWTError, ExpiredSignatureError
from passlib.context import CryptContext
from fastapi import HTTPException, status
from fastapi.security import OAuth2PasswordBearer

from . import schemas
from .config import Settings
from .stores import Stores

logger = logging.getLogger(__name__)

# Password and PIN hashing context
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

# OAuth2 bearer token scheme (admin login issues it from a form post)
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/admin/login")


# --- Password / PIN utilities ---
def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a plain password or PIN against its bcrypt hash"""
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    """Hash a password or PIN for storing in the database"""
    return pwd_context.hash(password)


# --- JWT utilities ---
def create_access_token(
    settings: Settings,
    subject: str,
    role: str,
    name: Optional[str] = None,
    expires_delta: Optional[timedelta] = None,
) -> str:
    """Generate a JWT access token"""
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    to_encode = {
        "sub": str(subject),     # admin username or staff_id
        "role": role,
        "name": name,
        "iat": datetime.now(timezone.utc),
        "exp": expire,
    }
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_token(settings: Settings, token: str) -> schemas.Principal:
    """Decode and validate a JWT token"""
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Invalid or expired token",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except ExpiredSignatureError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has expired",
            headers={"WWW-Authenticate": "Bearer"},
        )
    except JWTError:
        raise credentials_exception

    if not payload.get("sub") or payload.get("role") not in ("admin", "staff"):
        raise credentials_exception
    return schemas.Principal(
        sub=payload["sub"],
        role=payload["role"],
        name=payload.get("name"),
        exp=payload.get("exp"),
    )


# --- Authentication ---
def authenticate_admin(stores: Stores, username: str, password: str) -> Optional[schemas.AdminAccount]:
    """Return the admin for valid credentials, None otherwise (inactive admins included)."""
    hashed = stores.admins.get_password_hash(username)
    if not hashed or not verify_password(password, hashed):
        return None
    return stores.admins.get_by_username(username)


def authenticate_staff(stores: Stores, staff_id: str, pin: str) -> Optional[schemas.StaffMember]:
    """
    Authenticate an active staff member by staff ID and PIN.
    PINs are compared against their stored bcrypt hash, never in clear.
    """
    hashed = stores.staff.get_pin_hash(staff_id)
    if not hashed or not verify_password(pin, hashed):
        return None
    return stores.staff.get_by_staff_id(staff_id)


def ensure_default_admin(stores: Stores, settings: Settings) -> None:
    """Seed the configured admin account on first start."""
    if stores.admins.get_by_username(settings.DEFAULT_ADMIN_USERNAME):
        logger.info("Default admin already exists")
        return
    stores.admins.create(
        username=settings.DEFAULT_ADMIN_USERNAME,
        password_hash=get_password_hash(settings.DEFAULT_ADMIN_PASSWORD),
        email=settings.DEFAULT_ADMIN_EMAIL,
    )
    logger.info(f"Default admin created: {settings.DEFAULT_ADMIN_USERNAME}")
