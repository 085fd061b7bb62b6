"""
Authentication endpoints: login and current user.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.security import OAuth2PasswordRequestForm

from intake.auth import (
    LoginRequest, Token, User,
    authenticate_user, get_current_user, issue_token
)
from intake.config import Settings, get_settings

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/auth", tags=["authentication"])


def _login(settings: Settings, username: str, password: str) -> Token:
    user = authenticate_user(settings, username, password)

    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid username or password",
            headers={"WWW-Authenticate": "Bearer"},
        )

    logger.info(f"User logged in: {user.username}")
    return issue_token(user, settings)


@router.post("/login", response_model=Token)
async def login(
    login_request: LoginRequest,
    settings: Settings = Depends(get_settings)
):
    """
    Authenticate user and return JWT access token.

    **Request Body:**
    - `username`: Account name
    - `password`: Account password

    **Returns:**
    - `access_token`: JWT token for authentication
    - `token_type`: "bearer"
    - `expires_in`: Token expiration time in seconds

    **Usage:**
    ```
    curl -X POST http://localhost:8000/v1/auth/login \\
      -H "Content-Type: application/json" \\
      -d '{"username": "admin", "password": "your-password"}'
    ```
    """
    return _login(settings, login_request.username, login_request.password)


@router.post("/login/form", response_model=Token)
async def login_form(
    form_data: OAuth2PasswordRequestForm = Depends(),
    settings: Settings = Depends(get_settings)
):
    """OAuth2 password-form login (used by the interactive docs)."""
    return _login(settings, form_data.username, form_data.password)


@router.get("/me", response_model=User)
async def read_current_user(current_user: User = Depends(get_current_user)):
    """Return the authenticated user."""
    return current_user
