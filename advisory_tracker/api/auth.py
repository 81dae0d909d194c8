"""Authentication API routes: password login and the current-user view."""

import logging

from fastapi import APIRouter, HTTPException, status
from pydantic import BaseModel, EmailStr
from sqlalchemy import select

from ..core import CurrentUserDep, SessionDep
from ..core.security import create_access_token, verify_password
from ..models import Team, User, utcnow
from ..schemas import TeamRef

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["authentication"])


# =============================================================================
# REQUEST/RESPONSE SCHEMAS
# =============================================================================


class LoginRequest(BaseModel):
    """Login request with email and password."""
    email: EmailStr
    password: str


class TokenResponse(BaseModel):
    """Token response after successful login."""
    access_token: str
    token_type: str = "bearer"
    user_id: str
    user_name: str
    user_email: str
    role: str


class UserInfo(BaseModel):
    """User info for the current session."""
    id: str
    name: str
    email: str
    role: str
    teams: list[TeamRef]


# =============================================================================
# ENDPOINTS
# =============================================================================


@router.post("/login", response_model=TokenResponse)
async def login(
    request: LoginRequest,
    session: SessionDep,
):
    """Login with email and password."""
    result = await session.execute(
        select(User).where(
            User.email == request.email,
            User.deleted_at.is_(None),
        )
    )
    user = result.scalar_one_or_none()

    if not user or not user.hashed_password or not verify_password(
        request.password, user.hashed_password
    ):
        logger.info(f"Failed login for {request.email}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
        )

    user.last_login_at = utcnow()
    token = create_access_token(user_id=user.id)

    return TokenResponse(
        access_token=token,
        user_id=str(user.id),
        user_name=user.name,
        user_email=user.email,
        role=user.role.value,
    )


@router.get("/me", response_model=UserInfo)
async def get_me(
    current_user: CurrentUserDep,
    session: SessionDep,
):
    """The authenticated user and their teams."""
    teams = []
    if current_user.team_ids:
        result = await session.execute(
            select(Team)
            .where(Team.id.in_(current_user.team_ids), Team.deleted_at.is_(None))
            .order_by(Team.name)
        )
        teams = [TeamRef.model_validate(t) for t in result.scalars().all()]

    user = current_user.user
    return UserInfo(
        id=str(user.id),
        name=user.name,
        email=user.email,
        role=user.role.value,
        teams=teams,
    )
