"""Issue and verify signed bearer credentials.

Credentials are compact JWS tokens signed with the deployment's RSA key. Three
kinds exist and each decodes into its own claims model:

* access: carries ``role`` and ``device_id``; no ``kind`` claim on the wire.
* refresh: carries ``kind="refresh"`` and ``device_id``.
* verification: carries ``kind="verification"``; used once to confirm an email.

Verification checks the header algorithm before touching the signature so that
``alg=none`` and symmetric algorithms keyed with the public PEM are refused
outright. Claim checks then run in a fixed order (issuer, audience, expiry,
not-before) and the first failure is reported.
"""

from __future__ import annotations

import math
import time
import uuid
from dataclasses import dataclass
from enum import StrEnum
from typing import Any, Callable, Literal, Union

import jwt
from pydantic import BaseModel, ConfigDict, ValidationError

from wedding_api.core.config import AuthConfig
from wedding_api.security.keys import KeyPair


class CredentialKind(StrEnum):
    """Kinds of credential minted by the service."""

    ACCESS = "access"
    REFRESH = "refresh"
    VERIFICATION = "verification"


class CredentialErrorKind(StrEnum):
    """Reasons a credential fails verification."""

    MALFORMED = "malformed"
    BAD_SIGNATURE = "bad_signature"
    EXPIRED = "expired"
    NOT_YET_VALID = "not_yet_valid"
    WRONG_ISSUER = "wrong_issuer"
    WRONG_AUDIENCE = "wrong_audience"
    WRONG_ALGORITHM = "wrong_algorithm"


class CredentialError(Exception):
    """Verification failure with a machine-readable kind."""

    def __init__(self, kind: CredentialErrorKind, message: str = "") -> None:
        super().__init__(message or kind.value)
        self.kind = kind


class _ClaimsBase(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    sub: str
    jti: str
    iss: str
    aud: str
    iat: int
    nbf: int
    exp: int

    def remaining_seconds(self, now: float) -> int:
        """Return whole seconds left before expiry, never negative."""
        return max(0, math.ceil(self.exp - now))


class AccessClaims(_ClaimsBase):
    """Claims of an access credential."""

    kind: Literal["access"] = "access"
    role: str
    device_id: str = ""


class RefreshClaims(_ClaimsBase):
    """Claims of a refresh credential."""

    kind: Literal["refresh"] = "refresh"
    device_id: str = ""


class VerificationClaims(_ClaimsBase):
    """Claims of an email verification credential."""

    kind: Literal["verification"] = "verification"


Claims = Union[AccessClaims, RefreshClaims, VerificationClaims]

_CLAIMS_BY_KIND: dict[str, type[_ClaimsBase]] = {
    CredentialKind.ACCESS: AccessClaims,
    CredentialKind.REFRESH: RefreshClaims,
    CredentialKind.VERIFICATION: VerificationClaims,
}


@dataclass(frozen=True)
class CredentialPair:
    """Access and refresh credentials minted together."""

    access: str
    refresh: str
    access_claims: AccessClaims
    refresh_claims: RefreshClaims

    @property
    def access_id(self) -> str:
        return self.access_claims.jti

    @property
    def refresh_id(self) -> str:
        return self.refresh_claims.jti


class CredentialService:
    """Mint and verify credentials with one keypair and one issuer/audience."""

    def __init__(
        self,
        *,
        keys: KeyPair,
        config: AuthConfig,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Bind key material, claim expectations and the time source."""
        self._keys = keys
        self._config = config
        self._clock = clock

    @property
    def algorithm(self) -> str:
        return self._keys.algorithm

    def now(self) -> float:
        """Return the service clock reading."""
        return self._clock()

    def issue_pair(self, *, subject: str, device_id: str, role: str) -> CredentialPair:
        """Mint an access/refresh pair sharing subject and device."""
        issued_at = int(self._clock())
        access_claims = AccessClaims(
            **self._base_claims(subject, issued_at, self._config.access_token_ttl_seconds),
            role=role,
            device_id=device_id,
        )
        refresh_claims = RefreshClaims(
            **self._base_claims(subject, issued_at, self._config.refresh_token_ttl_seconds),
            device_id=device_id,
        )
        return CredentialPair(
            access=self._sign(access_claims),
            refresh=self._sign(refresh_claims),
            access_claims=access_claims,
            refresh_claims=refresh_claims,
        )

    def issue_verification(self, *, subject: str) -> str:
        """Mint a verification credential for the email confirmation link."""
        issued_at = int(self._clock())
        claims = VerificationClaims(
            **self._base_claims(
                subject, issued_at, self._config.verification_token_ttl_seconds
            )
        )
        return self._sign(claims)

    def verify(self, token: str) -> Claims:
        """Verify a token and return its claims, or raise ``CredentialError``."""
        if not isinstance(token, str) or token.count(".") != 2:
            raise CredentialError(CredentialErrorKind.MALFORMED, "Token is not a compact JWS")
        try:
            header = jwt.get_unverified_header(token)
        except jwt.DecodeError as exc:
            raise CredentialError(CredentialErrorKind.MALFORMED, "Token header is unreadable") from exc

        if header.get("alg") != self._keys.algorithm:
            raise CredentialError(
                CredentialErrorKind.WRONG_ALGORITHM,
                f"Unexpected signing algorithm: {header.get('alg')!r}",
            )

        try:
            payload: dict[str, Any] = jwt.decode(
                token,
                self._keys.public_key,
                algorithms=[self._keys.algorithm],
                options={
                    "verify_signature": True,
                    "verify_exp": False,
                    "verify_nbf": False,
                    "verify_iat": False,
                    "verify_iss": False,
                    "verify_aud": False,
                },
            )
        except jwt.InvalidSignatureError as exc:
            raise CredentialError(CredentialErrorKind.BAD_SIGNATURE, "Signature mismatch") from exc
        except jwt.InvalidAlgorithmError as exc:
            raise CredentialError(CredentialErrorKind.WRONG_ALGORITHM, str(exc)) from exc
        except jwt.InvalidTokenError as exc:
            raise CredentialError(CredentialErrorKind.MALFORMED, str(exc)) from exc

        self._check_registered_claims(payload)

        kind = str(payload.get("kind") or CredentialKind.ACCESS)
        model = _CLAIMS_BY_KIND.get(kind)
        if model is None:
            raise CredentialError(CredentialErrorKind.MALFORMED, f"Unknown credential kind: {kind}")
        try:
            return model.model_validate({**payload, "kind": kind})  # type: ignore[return-value]
        except ValidationError as exc:
            raise CredentialError(CredentialErrorKind.MALFORMED, "Missing or invalid claims") from exc

    def _check_registered_claims(self, payload: dict[str, Any]) -> None:
        if payload.get("iss") != self._config.issuer:
            raise CredentialError(CredentialErrorKind.WRONG_ISSUER, "Issuer mismatch")

        audience = payload.get("aud")
        audiences = audience if isinstance(audience, list) else [audience]
        if self._config.audience not in audiences:
            raise CredentialError(CredentialErrorKind.WRONG_AUDIENCE, "Audience mismatch")

        now = self._clock()
        exp = payload.get("exp")
        if not isinstance(exp, (int, float)):
            raise CredentialError(CredentialErrorKind.MALFORMED, "Missing exp claim")
        if now >= exp:
            raise CredentialError(CredentialErrorKind.EXPIRED, "Token has expired")

        nbf = payload.get("nbf")
        if not isinstance(nbf, (int, float)):
            raise CredentialError(CredentialErrorKind.MALFORMED, "Missing nbf claim")
        if now < nbf:
            raise CredentialError(CredentialErrorKind.NOT_YET_VALID, "Token is not yet valid")

    def _base_claims(self, subject: str, issued_at: int, ttl_seconds: int) -> dict[str, Any]:
        return {
            "sub": subject,
            "jti": str(uuid.uuid4()),
            "iss": self._config.issuer,
            "aud": self._config.audience,
            "iat": issued_at,
            "nbf": issued_at,
            "exp": issued_at + ttl_seconds,
        }

    def _sign(self, claims: _ClaimsBase) -> str:
        # Access credentials are identified by the presence of role, not by a kind claim.
        exclude = {"kind"} if isinstance(claims, AccessClaims) else set()
        return jwt.encode(
            claims.model_dump(exclude=exclude),
            self._keys.private_key,
            algorithm=self._keys.algorithm,
            headers={"typ": "JWT"},
        )
