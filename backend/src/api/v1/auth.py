"""
Admin authentication endpoints.
"""

from fastapi import APIRouter, Request, status

from src.api.deps import AuthService, CurrentAdmin
from src.api.limiter import LOGIN_LIMIT, limiter
from src.schemas.auth import LoginRequest, LoginResponse, SessionResponse

router = APIRouter(prefix="/auth", tags=["Authentication"])


@router.post("/login", response_model=LoginResponse, summary="Admin login")
@limiter.limit(LOGIN_LIMIT)
async def login(request: Request, credentials: LoginRequest, auth: AuthService) -> LoginResponse:
    session = await auth.login(credentials.username, credentials.password)
    return LoginResponse(access_token=session.token, expires_at=session.expires_at)


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT, summary="Admin logout")
async def logout(admin: CurrentAdmin, auth: AuthService) -> None:
    await auth.logout(admin.token)


@router.get("/session", response_model=SessionResponse, summary="Current admin session")
async def get_session(admin: CurrentAdmin) -> SessionResponse:
    return SessionResponse.model_validate(admin)
