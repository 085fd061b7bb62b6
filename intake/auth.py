"""
Authentication module with JWT and password hashing.

Accounts come from configuration: one regular user and one administrator.
Passwords are bcrypt-hashed once per configured value and verified with
bcrypt on login.
"""

import logging
import secrets
from datetime import datetime, timedelta, timezone
from enum import Enum
from functools import lru_cache
from typing import Dict, Optional

import bcrypt
from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from pydantic import BaseModel

from intake.config import Settings, get_settings

logger = logging.getLogger(__name__)

# OAuth2 scheme for token extraction
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/v1/auth/login/form")


# ============================================================================
# Models
# ============================================================================

class Role(str, Enum):
    """Application roles."""

    USER = "user"      # can upload files
    ADMIN = "admin"    # can also browse, download and search the audit log


class Token(BaseModel):
    """JWT token response."""
    access_token: str
    token_type: str = "bearer"
    expires_in: int


class TokenData(BaseModel):
    """Data extracted from JWT token."""
    username: Optional[str] = None
    role: Optional[str] = None
    session_id: Optional[str] = None
    exp: Optional[datetime] = None


class User(BaseModel):
    """Authenticated user."""
    username: str
    role: Role = Role.USER
    session_id: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN


class UserInDB(User):
    """User model with hashed password."""
    hashed_password: str


class LoginRequest(BaseModel):
    """Login request body."""
    username: str
    password: str


# ============================================================================
# Password Functions
# ============================================================================

def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a password against its hash using bcrypt."""
    try:
        return bcrypt.checkpw(
            plain_password.encode('utf-8'),
            hashed_password.encode('utf-8')
        )
    except ValueError as e:
        logger.error(f"Password verification error: {e}")
        return False


def get_password_hash(password: str) -> str:
    """Hash a password using bcrypt."""
    return bcrypt.hashpw(
        password.encode('utf-8'),
        bcrypt.gensalt()
    ).decode('utf-8')


@lru_cache(maxsize=16)
def _configured_hash(password: str) -> str:
    return get_password_hash(password)


# ============================================================================
# JWT Functions
# ============================================================================

def create_access_token(
    data: dict,
    settings: Settings,
    expires_delta: Optional[timedelta] = None
) -> str:
    """
    Create a JWT access token.

    Args:
        data: Payload data to encode
        settings: Settings holding the signing secret and algorithm
        expires_delta: Token expiration time

    Returns:
        Encoded JWT token
    """
    to_encode = data.copy()

    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(minutes=settings.jwt_expire_minutes)

    to_encode.update({"exp": expire})

    return jwt.encode(
        to_encode,
        settings.jwt_secret_key,
        algorithm=settings.jwt_algorithm
    )


def decode_access_token(token: str, settings: Settings) -> Optional[TokenData]:
    """
    Decode and validate a JWT access token.

    Returns:
        TokenData if valid, None otherwise
    """
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret_key,
            algorithms=[settings.jwt_algorithm]
        )
    except JWTError as e:
        logger.warning(f"JWT decode error: {e}")
        return None

    username = payload.get("sub")
    if username is None:
        return None

    return TokenData(
        username=username,
        role=payload.get("role", Role.USER.value),
        session_id=payload.get("sid"),
        exp=payload.get("exp")
    )


def issue_token(user: User, settings: Settings) -> Token:
    """Mint an access token with a fresh session id."""
    access_token = create_access_token(
        data={"sub": user.username, "role": user.role.value, "sid": secrets.token_urlsafe(16)},
        settings=settings,
        expires_delta=timedelta(minutes=settings.jwt_expire_minutes)
    )
    return Token(
        access_token=access_token,
        token_type="bearer",
        expires_in=settings.jwt_expire_minutes * 60
    )


# ============================================================================
# User Directory
# ============================================================================

def configured_users(settings: Settings) -> Dict[str, UserInDB]:
    """Accounts defined in settings, keyed by username."""
    users = {
        settings.dev_username: UserInDB(
            username=settings.dev_username,
            role=Role.USER,
            hashed_password=_configured_hash(settings.dev_password)
        ),
        settings.admin_username: UserInDB(
            username=settings.admin_username,
            role=Role.ADMIN,
            hashed_password=_configured_hash(settings.admin_password)
        ),
    }
    return users


def authenticate_user(settings: Settings, username: str, password: str) -> Optional[User]:
    """
    Authenticate user with username and password.

    Returns:
        User object if authenticated, None otherwise
    """
    user = configured_users(settings).get(username)

    if not user:
        logger.warning(f"Login attempt for non-existent user: {username}")
        return None

    if not verify_password(password, user.hashed_password):
        logger.warning(f"Invalid password for user: {username}")
        return None

    logger.info(f"User authenticated: {username}")
    return User(username=user.username, role=user.role)


# ============================================================================
# Dependencies
# ============================================================================

async def get_current_user(
    token: str = Depends(oauth2_scheme),
    settings: Settings = Depends(get_settings)
) -> User:
    """
    Dependency to get current authenticated user from JWT token.

    Raises:
        HTTPException: If token is invalid or names an unknown role
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    token_data = decode_access_token(token, settings)

    if token_data is None:
        raise credentials_exception

    try:
        role = Role(token_data.role)
    except ValueError:
        raise credentials_exception

    return User(username=token_data.username, role=role, session_id=token_data.session_id)


async def get_current_admin_user(
    current_user: User = Depends(get_current_user)
) -> User:
    """
    Dependency to ensure current user is an admin.

    Raises:
        HTTPException: If user is not an admin
    """
    if not current_user.is_admin:
        logger.warning(f"Non-admin user {current_user.username} attempted admin action")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin privileges required"
        )

    return current_user
