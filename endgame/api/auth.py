from typing import Annotated

from fastapi import APIRouter, Depends, status
from fastapi.security import OAuth2PasswordRequestForm

from endgame.api.errors import http_error
from endgame.core.auth import CurrentProfile, create_access_token
from endgame.schemas.schemas import ProfileCreate, ProfilePrivateResponse, Token
from endgame.services.errors import ServiceError
from endgame.services.profile_service import authenticate, create_profile

router = APIRouter(prefix="/api/v1/auth", tags=["auth"])


@router.post("/register", status_code=status.HTTP_201_CREATED)
async def register(profile_data: ProfileCreate) -> ProfilePrivateResponse:
    """
    Register a new athlete profile.

    Parameters:
    - **profile_data**: Email, password, username and full name

    Returns:
    - **ProfilePrivateResponse**: The new profile, including its email

    Raises:
    - **409 Conflict**: If the username or email is already registered
    - **422 Unprocessable Entity**: If a field is invalid
    """
    try:
        profile = await create_profile(
            email=profile_data.email,
            password=profile_data.password,
            username=profile_data.username,
            full_name=profile_data.full_name,
        )
    except ServiceError as exc:
        raise http_error(exc) from exc
    return ProfilePrivateResponse.model_validate(profile)


@router.post("/login", status_code=status.HTTP_200_OK)
async def login(form_data: Annotated[OAuth2PasswordRequestForm, Depends()]) -> Token:
    """
    Authenticate with username (or email) and password and return an access token.

    Raises:
    - **401 Unauthorized**: If credentials are invalid
    """
    try:
        profile = await authenticate(form_data.username, form_data.password)
    except ServiceError as exc:
        raise http_error(exc) from exc

    return Token(access_token=create_access_token(profile.id), token_type="bearer")


@router.get("/me", status_code=status.HTTP_200_OK)
async def me(current_profile: CurrentProfile) -> ProfilePrivateResponse:
    """Get the signed-in profile."""
    return ProfilePrivateResponse.model_validate(current_profile)
