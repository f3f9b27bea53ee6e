"""Authentication and account administration routers."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request, Response

from wedding_api.api.contracts import (
    ApiErrorResponse,
    AuthMeResponse,
    AuthSessionResponse,
    MessageResponse,
    RegisterResponse,
    UserProfileResponse,
    UsersListResponse,
)
from wedding_api.api.errors import ApiError, ApiErrorCode
from wedding_api.api.request_info import user_agent
from wedding_api.auth.models import (
    AuthSession,
    ForgotPasswordRequest,
    LoginRequest,
    LogoutRequest,
    RefreshRequest,
    RegisterRequest,
    ResetPasswordRequest,
)
from wedding_api.auth.service import AuthService
from wedding_api.core.security import device_fingerprint
from wedding_api.security.gates import (
    ACCESS_TOKEN_COOKIE,
    ADMIN_ROLE,
    AuthGate,
    CallerIdentity,
    require_role,
)

REFRESH_TOKEN_COOKIE = "refresh_token"
REFRESH_COOKIE_PATH = "/auth"

_AUTH_ERRORS = {
    400: {"model": ApiErrorResponse},
    401: {"model": ApiErrorResponse},
    429: {"model": ApiErrorResponse},
}


def _set_session_cookies(response: Response, session: AuthSession, *, secure: bool) -> None:
    """Mirror the issued credentials into HttpOnly cookies for browser clients."""
    response.set_cookie(
        ACCESS_TOKEN_COOKIE,
        session.access_token,
        max_age=session.expires_in,
        httponly=True,
        secure=secure,
        samesite="lax",
    )
    response.set_cookie(
        REFRESH_TOKEN_COOKIE,
        session.refresh_token,
        max_age=session.refresh_expires_in,
        path=REFRESH_COOKIE_PATH,
        httponly=True,
        secure=secure,
        samesite="lax",
    )


def _clear_session_cookies(response: Response, *, secure: bool) -> None:
    response.delete_cookie(ACCESS_TOKEN_COOKIE, httponly=True, secure=secure, samesite="lax")
    response.delete_cookie(
        REFRESH_TOKEN_COOKIE,
        path=REFRESH_COOKIE_PATH,
        httponly=True,
        secure=secure,
        samesite="lax",
    )


def _session_response(session: AuthSession) -> AuthSessionResponse:
    return AuthSessionResponse(
        access_token=session.access_token,
        refresh_token=session.refresh_token,
        token_type=session.token_type,
        expires_in=session.expires_in,
        user=UserProfileResponse(**session.user),
    )


def create_auth_router(
    service: AuthService, gate: AuthGate, *, cookie_secure: bool = True
) -> APIRouter:
    """Build the /auth router."""
    router = APIRouter(prefix="/auth", tags=["auth"])

    @router.post(
        "/register",
        status_code=201,
        response_model=RegisterResponse,
        responses={**_AUTH_ERRORS, 409: {"model": ApiErrorResponse}},
    )
    async def register(
        req: RegisterRequest, request: Request, response: Response
    ) -> RegisterResponse:
        """Create an account and return its first session."""
        device_id = device_fingerprint(req.device_info, user_agent(request))
        session = await service.register(req, device_id=device_id)
        _set_session_cookies(response, session, secure=cookie_secure)
        return RegisterResponse(
            **_session_response(session).model_dump(),
            message="Registration successful. Please check your email to verify your account.",
        )

    @router.post("/login", response_model=AuthSessionResponse, responses=_AUTH_ERRORS)
    async def login(
        req: LoginRequest, request: Request, response: Response
    ) -> AuthSessionResponse:
        """Authenticate user and return token pair."""
        device_id = device_fingerprint(req.device_info, user_agent(request))
        session = await service.login(req.email, req.password, device_id=device_id)
        _set_session_cookies(response, session, secure=cookie_secure)
        return _session_response(session)

    @router.post("/refresh", response_model=AuthSessionResponse, responses=_AUTH_ERRORS)
    async def refresh(
        request: Request, response: Response, req: RefreshRequest | None = None
    ) -> AuthSessionResponse:
        """Rotate refresh token and issue new session tokens."""
        token = (req.refresh_token if req else None) or request.cookies.get(
            REFRESH_TOKEN_COOKIE, ""
        )
        if not token:
            raise ApiError(
                error_code=ApiErrorCode.UNAUTHORIZED, message="Refresh token required"
            )
        session = await service.refresh(token)
        _set_session_cookies(response, session, secure=cookie_secure)
        return _session_response(session)

    @router.post("/logout", response_model=MessageResponse, responses=_AUTH_ERRORS)
    async def logout(
        request: Request,
        response: Response,
        req: LogoutRequest | None = None,
        caller: CallerIdentity = Depends(gate.require),
    ) -> MessageResponse:
        """Revoke the caller's access credential and refresh session."""
        token = (req.refresh_token if req else None) or request.cookies.get(
            REFRESH_TOKEN_COOKIE
        )
        await service.logout(caller, token)
        _clear_session_cookies(response, secure=cookie_secure)
        return MessageResponse(message="Logged out successfully")

    @router.post("/forgot-password", response_model=MessageResponse, responses=_AUTH_ERRORS)
    async def forgot_password(req: ForgotPasswordRequest) -> MessageResponse:
        """Send a reset link; the reply never reveals whether the account exists."""
        await service.forgot_password(req.email)
        return MessageResponse(
            message="If an account exists for this email, a reset link has been sent."
        )

    @router.post("/reset-password", response_model=MessageResponse, responses=_AUTH_ERRORS)
    async def reset_password(req: ResetPasswordRequest) -> MessageResponse:
        """Set a new password with a reset token."""
        await service.reset_password(req.token, req.new_password)
        return MessageResponse(message="Password has been reset. Please sign in again.")

    @router.get("/verify-email", response_model=MessageResponse, responses=_AUTH_ERRORS)
    async def verify_email(
        token: str = Query(min_length=1, max_length=4096),
    ) -> MessageResponse:
        """Confirm an email address from the verification link."""
        await service.verify_email(token)
        return MessageResponse(message="Email verified successfully")

    @router.get("/me", response_model=AuthMeResponse, responses=_AUTH_ERRORS)
    def me(caller: CallerIdentity = Depends(gate.require)) -> AuthMeResponse:
        """Return the authenticated account."""
        user = service.me(caller)
        return AuthMeResponse(user=UserProfileResponse(**user.profile()))

    return router


def create_admin_router(service: AuthService, gate: AuthGate) -> APIRouter:
    """Build the /admin router; every route needs the admin role."""
    router = APIRouter(
        prefix="/admin",
        tags=["admin"],
        dependencies=[Depends(gate.require), Depends(require_role(ADMIN_ROLE))],
        responses={401: {"model": ApiErrorResponse}, 403: {"model": ApiErrorResponse}},
    )

    @router.get("/users", response_model=UsersListResponse)
    def list_users(limit: int = Query(default=100, ge=1, le=500)) -> UsersListResponse:
        """List accounts."""
        return UsersListResponse(
            items=[UserProfileResponse(**user.profile()) for user in service.list_users(limit=limit)]
        )

    return router
