"""Authentication service: registration, sign-in, rotation and revocation."""

from __future__ import annotations

import logging

from wedding_api.api.errors import ApiError, ApiErrorCode
from wedding_api.auth.models import AuthSession, RegisterRequest, UserRecord, UserStatus
from wedding_api.auth.notifier import AuthNotifier, LoggingNotifier
from wedding_api.auth.repository import DuplicateEmailError, UserRepository, new_object_id
from wedding_api.core.config import AuthConfig
from wedding_api.core.logging import mask_email
from wedding_api.core.security import (
    digest_token,
    hash_password,
    new_reset_token,
    password_policy_violations,
    verify_password,
)
from wedding_api.security.credentials import (
    CredentialError,
    CredentialKind,
    CredentialService,
    RefreshClaims,
    VerificationClaims,
)
from wedding_api.security.denylist import SessionRecord, StoreUnavailableError, TokenStore
from wedding_api.security.gates import ADMIN_ROLE, CallerIdentity

LOGGER = logging.getLogger(__name__)

LOCKED_STATUSES = frozenset({UserStatus.SUSPENDED, UserStatus.INACTIVE})


class AuthService:
    """Account lifecycle on top of the credential service and token store."""

    def __init__(
        self,
        *,
        users: UserRepository,
        credentials: CredentialService,
        tokens: TokenStore,
        config: AuthConfig,
        notifier: AuthNotifier | None = None,
        logger: logging.Logger = LOGGER,
    ) -> None:
        """Initialize service dependencies."""
        self._users = users
        self._credentials = credentials
        self._tokens = tokens
        self._config = config
        self._notifier = notifier or LoggingNotifier()
        self._logger = logger

    def bootstrap_admin_user(self) -> UserRecord | None:
        """Ensure the configured admin account exists; no-op when unset."""
        if not self._config.admin_email or not self._config.admin_password:
            return None
        existing = self._users.get_by_email(self._config.admin_email)
        if existing is not None:
            return existing
        try:
            return self._users.insert(
                UserRecord(
                    user_id=new_object_id(),
                    email=self._config.admin_email,
                    first_name="Admin",
                    last_name="User",
                    password_hash=hash_password(self._config.admin_password),
                    role=ADMIN_ROLE,
                    status=UserStatus.ACTIVE,
                )
            )
        except DuplicateEmailError:
            return self._users.get_by_email(self._config.admin_email)

    async def register(self, req: RegisterRequest, *, device_id: str) -> AuthSession:
        """Create an unverified account, send a verification link and sign in."""
        self._assert_strong_password(req.password)
        try:
            user = self._users.insert(
                UserRecord(
                    user_id=new_object_id(),
                    email=req.email,
                    first_name=req.first_name.strip(),
                    last_name=req.last_name.strip(),
                    password_hash=hash_password(req.password),
                    status=UserStatus.UNVERIFIED,
                )
            )
        except DuplicateEmailError as exc:
            raise ApiError(
                error_code=ApiErrorCode.EMAIL_ALREADY_EXISTS,
                message="An account with this email already exists",
            ) from exc

        token = self._credentials.issue_verification(subject=user.user_id)
        self._notifier.send_verification(email=user.email, token=token)
        self._logger.info("user_registered", extra={"subject": user.user_id})
        return await self._issue_session(user, device_id)

    async def login(self, email: str, password: str, *, device_id: str) -> AuthSession:
        """Authenticate credentials and issue a bound access/refresh pair."""
        user = self._users.get_by_email(email)
        if user is None or not verify_password(password, user.password_hash):
            raise ApiError(
                error_code=ApiErrorCode.INVALID_CREDENTIALS,
                message="Invalid email or password",
            )
        self._assert_not_locked(user)
        if user.status == UserStatus.UNVERIFIED:
            raise ApiError(
                error_code=ApiErrorCode.EMAIL_NOT_VERIFIED,
                message="Please verify your email before signing in",
            )
        return await self._issue_session(user, device_id)

    async def refresh(self, refresh_token: str) -> AuthSession:
        """Rotate a refresh credential; each one can be exchanged once."""
        claims = self._verify_kind(refresh_token, RefreshClaims)
        try:
            return await self._rotate(claims)
        except StoreUnavailableError as exc:
            raise self._store_unavailable("refresh", exc) from exc

    async def _rotate(self, claims: RefreshClaims) -> AuthSession:
        if await self._tokens.is_denied(claims.jti):
            raise ApiError(error_code=ApiErrorCode.TOKEN_REVOKED, message="Token has been revoked")

        session = await self._tokens.claim_session(claims.sub, claims.jti)
        if session is None:
            raise ApiError(error_code=ApiErrorCode.TOKEN_REVOKED, message="Session not found")
        if session.device_id != claims.device_id:
            revoked = await self._tokens.revoke_all_for_subject(claims.sub)
            self._logger.warning(
                "refresh_device_mismatch sessions_revoked=%s",
                revoked,
                extra={"subject": claims.sub},
            )
            raise ApiError(
                error_code=ApiErrorCode.TOKEN_REVOKED,
                message="Security violation detected. All sessions revoked.",
            )

        await self._tokens.deny(
            claims.jti,
            CredentialKind.REFRESH,
            claims.remaining_seconds(self._credentials.now()),
        )
        user = self._users.get_by_id(claims.sub)
        if user is None:
            raise ApiError(error_code=ApiErrorCode.UNAUTHORIZED, message="User not found")
        self._assert_not_locked(user)
        return await self._issue_session(user, claims.device_id)

    async def logout(self, caller: CallerIdentity, refresh_token: str | None = None) -> None:
        """Revoke the presented access credential and, if given, its refresh session."""
        try:
            await self._revoke_for_logout(caller, refresh_token)
        except StoreUnavailableError as exc:
            raise self._store_unavailable("logout", exc) from exc

    async def _revoke_for_logout(self, caller: CallerIdentity, refresh_token: str | None) -> None:
        now = self._credentials.now()
        await self._tokens.deny(
            caller.credential_id,
            CredentialKind.ACCESS,
            max(0, caller.expires_at - int(now)),
        )
        if not refresh_token:
            return
        try:
            claims = self._credentials.verify(refresh_token)
        except CredentialError:
            return
        if not isinstance(claims, RefreshClaims) or claims.sub != caller.subject:
            return
        await self._tokens.deny(claims.jti, CredentialKind.REFRESH, claims.remaining_seconds(now))
        await self._tokens.drop_session(claims.sub, claims.jti)

    def _store_unavailable(self, operation: str, exc: StoreUnavailableError) -> ApiError:
        self._logger.warning(
            "token_store_unavailable operation=%s error=%s",
            operation,
            exc,
            extra={"error_code": ApiErrorCode.UNAUTHORIZED.value},
        )
        return ApiError(
            error_code=ApiErrorCode.UNAUTHORIZED, message="Unable to verify token status"
        )

    async def forgot_password(self, email: str) -> None:
        """Issue a reset token when the account exists; silent otherwise."""
        user = self._users.get_by_email(email)
        if user is None:
            self._logger.info("password_reset_unknown_email to=%s", mask_email(email))
            return
        token = new_reset_token()
        await self._tokens.put_reset_token(
            digest_token(token), user.user_id, self._config.password_reset_ttl_seconds
        )
        self._notifier.send_password_reset(email=user.email, token=token)

    async def reset_password(self, token: str, new_password: str) -> None:
        """Consume a reset token, store the new hash and end every session."""
        self._assert_strong_password(new_password)
        subject = await self._tokens.consume_reset_token(digest_token(token))
        if not subject:
            raise ApiError(
                error_code=ApiErrorCode.INVALID_TOKEN,
                message="Invalid or expired reset token",
            )
        if not self._users.set_password_hash(subject, hash_password(new_password)):
            raise ApiError(error_code=ApiErrorCode.NOT_FOUND, message="User not found")
        revoked = await self._tokens.revoke_all_for_subject(subject)
        self._logger.info(
            "password_reset_completed sessions_revoked=%s", revoked, extra={"subject": subject}
        )

    async def verify_email(self, token: str) -> UserRecord:
        """Activate the account named by a single-use verification credential."""
        claims = self._verify_kind(token, VerificationClaims)
        kinds = (CredentialKind.VERIFICATION,)
        if await self._tokens.is_denied(claims.jti, kinds):
            raise ApiError(
                error_code=ApiErrorCode.INVALID_TOKEN,
                message="Verification link has already been used",
            )
        user = self._users.get_by_id(claims.sub)
        if user is None:
            raise ApiError(error_code=ApiErrorCode.NOT_FOUND, message="User not found")

        await self._tokens.deny(
            claims.jti,
            CredentialKind.VERIFICATION,
            claims.remaining_seconds(self._credentials.now()),
        )
        if user.status == UserStatus.UNVERIFIED:
            self._users.set_status(user.user_id, UserStatus.ACTIVE)
            user = user.model_copy(update={"status": UserStatus.ACTIVE})
        return user

    def me(self, caller: CallerIdentity) -> UserRecord:
        """Return the account behind an authenticated caller."""
        user = self._users.get_by_id(caller.subject)
        if user is None:
            raise ApiError(error_code=ApiErrorCode.NOT_FOUND, message="User not found")
        return user

    def list_users(self, *, limit: int = 100) -> list[UserRecord]:
        """Return accounts for the admin listing."""
        return self._users.list_users(limit=limit)

    async def _issue_session(self, user: UserRecord, device_id: str) -> AuthSession:
        pair = self._credentials.issue_pair(
            subject=user.user_id, device_id=device_id, role=user.role
        )
        await self._tokens.save_session(
            user.user_id,
            pair.refresh_id,
            SessionRecord(device_id=device_id, created_at=pair.refresh_claims.iat),
            self._config.refresh_token_ttl_seconds,
        )
        return AuthSession(
            access_token=pair.access,
            refresh_token=pair.refresh,
            expires_in=self._config.access_token_ttl_seconds,
            refresh_expires_in=self._config.refresh_token_ttl_seconds,
            user=user.profile(),
        )

    def _verify_kind(self, token: str, expected: type) -> RefreshClaims | VerificationClaims:
        try:
            claims = self._credentials.verify(token)
        except CredentialError as exc:
            raise ApiError(
                error_code=ApiErrorCode.INVALID_TOKEN, message="Invalid or expired token"
            ) from exc
        if not isinstance(claims, expected):
            raise ApiError(error_code=ApiErrorCode.INVALID_TOKEN, message="Wrong token type")
        return claims

    @staticmethod
    def _assert_strong_password(password: str) -> None:
        problems = password_policy_violations(password)
        if problems:
            raise ApiError(
                error_code=ApiErrorCode.WEAK_PASSWORD,
                message=problems[0],
                details=problems,
            )

    @staticmethod
    def _assert_not_locked(user: UserRecord) -> None:
        if user.status in LOCKED_STATUSES:
            raise ApiError(
                error_code=ApiErrorCode.ACCOUNT_LOCKED,
                message="Account is suspended or inactive",
            )
