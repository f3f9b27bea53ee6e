"""Route dependencies that authenticate the caller and enforce roles."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable

from fastapi import Request

from wedding_api.api.errors import ApiError, ApiErrorCode
from wedding_api.security.credentials import (
    AccessClaims,
    CredentialError,
    CredentialService,
)
from wedding_api.security.denylist import DenylistStore, StoreUnavailableError

LOGGER = logging.getLogger(__name__)

ADMIN_ROLE = "admin"
ACCESS_TOKEN_COOKIE = "access_token"


@dataclass(frozen=True)
class CallerIdentity:
    """Authenticated caller attached to ``request.state.caller``."""

    subject: str
    role: str
    device_id: str
    credential_id: str
    expires_at: int

    @property
    def is_admin(self) -> bool:
        return self.role == ADMIN_ROLE


def _extract_bearer_token(authorization: str) -> str:
    """Extract bearer token from authorization header value."""
    parts = (authorization or "").strip().split(" ", 1)
    if len(parts) != 2 or parts[0].lower() != "bearer":
        return ""
    return parts[1].strip()


def extract_token(request: Request) -> str:
    """Return the bearer token, falling back to the ``access_token`` cookie."""
    token = _extract_bearer_token(request.headers.get("authorization", ""))
    if token:
        return token
    return (request.cookies.get(ACCESS_TOKEN_COOKIE) or "").strip()


def get_caller(request: Request) -> CallerIdentity | None:
    """Return the identity attached by the auth gate, if any."""
    caller = getattr(request.state, "caller", None)
    return caller if isinstance(caller, CallerIdentity) else None


class AuthGate:
    """Verify the presented access credential and consult the denylist."""

    def __init__(
        self,
        *,
        credentials: CredentialService,
        denylist: DenylistStore,
        logger: logging.Logger = LOGGER,
    ) -> None:
        self._credentials = credentials
        self._denylist = denylist
        self._logger = logger

    def _reject(self, request: Request, code: ApiErrorCode, reason: str) -> ApiError:
        self._logger.warning(
            "auth_rejected",
            extra={
                "path": request.url.path,
                "method": request.method,
                "error_code": str(code),
            },
        )
        return ApiError(error_code=code, message=reason)

    async def authenticate(self, request: Request) -> CallerIdentity:
        """Attach and return the caller identity or raise a 401 ``ApiError``."""
        token = extract_token(request)
        if not token:
            raise self._reject(request, ApiErrorCode.UNAUTHORIZED, "Missing authentication token")

        try:
            claims = self._credentials.verify(token)
        except CredentialError as exc:
            raise self._reject(
                request, ApiErrorCode.INVALID_TOKEN, "Invalid or expired token"
            ) from exc
        if not isinstance(claims, AccessClaims):
            raise self._reject(request, ApiErrorCode.INVALID_TOKEN, "Access token required")

        try:
            denied = await self._denylist.is_denied(claims.jti)
        except StoreUnavailableError as exc:
            raise self._reject(
                request, ApiErrorCode.UNAUTHORIZED, "Unable to verify token status"
            ) from exc
        if denied:
            raise self._reject(request, ApiErrorCode.TOKEN_REVOKED, "Token has been revoked")

        caller = CallerIdentity(
            subject=claims.sub,
            role=claims.role,
            device_id=claims.device_id,
            credential_id=claims.jti,
            expires_at=claims.exp,
        )
        request.state.caller = caller
        return caller

    async def require(self, request: Request) -> CallerIdentity:
        """Dependency: the route needs an authenticated caller."""
        return await self.authenticate(request)

    async def optional(self, request: Request) -> CallerIdentity | None:
        """Dependency: authenticate when possible, otherwise continue anonymously."""
        if not extract_token(request):
            return None
        try:
            return await self.authenticate(request)
        except ApiError:
            return None


def require_role(role: str) -> Callable:
    """Build a dependency requiring ``role``; admins pass every role check."""

    async def role_gate(request: Request) -> CallerIdentity:
        caller = get_caller(request)
        if caller is None:
            raise ApiError(error_code=ApiErrorCode.UNAUTHORIZED, message="Authentication required")
        if caller.role != role and not caller.is_admin:
            raise ApiError(error_code=ApiErrorCode.FORBIDDEN, message="Insufficient permissions")
        return caller

    role_gate.__name__ = f"require_role_{role}"
    return role_gate
