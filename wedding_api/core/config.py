"""Application configuration loaded from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from pathlib import Path

ENV_DEVELOPMENT = "development"
ENV_PRODUCTION = "production"

DEFAULT_CONTENT_SECURITY_POLICY = (
    "default-src 'self'; "
    "script-src 'self'; "
    "style-src 'self' 'unsafe-inline'; "
    "img-src 'self' data: https:; "
    "font-src 'self' data:; "
    "connect-src 'self'; "
    "frame-ancestors 'none'; "
    "base-uri 'self'; "
    "form-action 'self'"
)

DEFAULT_AUTH_PATHS = (
    "/auth/login",
    "/auth/register",
    "/auth/forgot-password",
    "/auth/reset-password",
)


def _env_str(name: str, default: str) -> str:
    return os.getenv(name, default).strip() or default


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    return int(raw) if raw else default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    return float(raw) if raw else default


def _env_list(name: str, default: tuple[str, ...]) -> tuple[str, ...]:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return tuple(item.strip() for item in raw.split(",") if item.strip())


def _read_pem(value_var: str, path_var: str) -> str:
    """Return PEM text from an inline variable or a file path variable."""
    inline = os.getenv(value_var, "").strip()
    if inline:
        # Inline PEM in .env files usually carries escaped newlines.
        return inline.replace("\\n", "\n")
    path = os.getenv(path_var, "").strip()
    if path:
        return Path(path).read_text(encoding="utf-8")
    return ""


@dataclass(frozen=True)
class AuthConfig:
    """Credential signing and session lifetime configuration."""

    private_key_pem: str
    public_key_pem: str
    issuer: str
    audience: str
    algorithm: str = "RS256"
    access_token_ttl_seconds: int = 15 * 60
    refresh_token_ttl_seconds: int = 7 * 24 * 60 * 60
    verification_token_ttl_seconds: int = 24 * 60 * 60
    password_reset_ttl_seconds: int = 60 * 60
    cookie_secure: bool = True
    admin_email: str = ""
    admin_password: str = ""


@dataclass(frozen=True)
class BucketPolicy:
    """Token-bucket parameters for one route class."""

    rate: float
    burst: int
    cleanup_interval_seconds: float = 5 * 60
    entry_ttl_seconds: float = 10 * 60
    per_path: bool = True


@dataclass(frozen=True)
class RouteClass:
    """Path prefix bound to a bucket policy."""

    name: str
    prefix: str
    policy: BucketPolicy


@dataclass(frozen=True)
class RateLimitConfig:
    """Rate limiting switch, route classes and the fallback policy."""

    enabled: bool
    default: BucketPolicy
    classes: tuple[RouteClass, ...]


@dataclass(frozen=True)
class BruteForceConfig:
    """Thresholds for the auth-endpoint abuse guard."""

    enabled: bool = True
    max_attempts: int = 5
    attempt_window_seconds: float = 15 * 60
    block_duration_seconds: float = 60 * 60
    cleanup_interval_seconds: float = 5 * 60
    track_by_ip: bool = True
    track_by_email: bool = True
    protected_paths: tuple[str, ...] = DEFAULT_AUTH_PATHS


@dataclass(frozen=True)
class SecurityHeadersConfig:
    """Response hardening headers."""

    content_security_policy: str = DEFAULT_CONTENT_SECURITY_POLICY
    hsts_enabled: bool = True
    hsts_value: str = "max-age=31536000; includeSubDomains; preload"
    frame_options: str = "DENY"
    content_type_options: str = "nosniff"
    xss_protection: str = "1; mode=block"
    referrer_policy: str = "strict-origin-when-cross-origin"
    permissions_policy: str = (
        "geolocation=(), microphone=(), camera=(), payment=()"
    )
    cross_origin_embedder_policy: str = "require-corp"
    cross_origin_opener_policy: str = "same-origin"
    cross_origin_resource_policy: str = "same-origin"
    custom_headers: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class CORSConfig:
    """Cross-origin policy."""

    allowed_origins: tuple[str, ...] = (
        "http://localhost:3000",
        "http://localhost:8080",
    )
    allowed_methods: tuple[str, ...] = (
        "GET",
        "POST",
        "PUT",
        "PATCH",
        "DELETE",
        "OPTIONS",
    )
    allowed_headers: tuple[str, ...] = (
        "Origin",
        "Content-Type",
        "Accept",
        "Authorization",
        "X-Request-ID",
    )
    exposed_headers: tuple[str, ...] = ("Content-Length", "Content-Type")
    allow_credentials: bool = True
    max_age_seconds: int = 86400
    strict_origin_checking: bool = True


@dataclass(frozen=True)
class ErrorHandlingConfig:
    """Development vs production error reporting."""

    include_stack_trace: bool
    log_detailed_errors: bool


@dataclass(frozen=True)
class StorageConfig:
    """Connection settings for the shared cache and the document store."""

    redis_url: str = ""
    mongodb_uri: str = ""
    mongodb_db: str = "wedding_invite"
    store_timeout_seconds: float = 2.0


@dataclass(frozen=True)
class LoggingConfig:
    """Structured logging configuration."""

    level: str = "INFO"


@dataclass(frozen=True)
class SecurityConfig:
    """API perimeter settings not covered by a dedicated section."""

    request_max_bytes: int = 1024 * 1024
    trust_forwarded_headers: bool = False


def default_rate_limit_config() -> RateLimitConfig:
    """Return the stock route classes."""
    minute = 60
    return RateLimitConfig(
        enabled=True,
        default=BucketPolicy(rate=1 / 0.06, burst=50, entry_ttl_seconds=5 * minute),
        classes=(
            RouteClass(
                name="auth",
                prefix="/auth",
                policy=BucketPolicy(rate=1 / 12, burst=5, entry_ttl_seconds=15 * minute),
            ),
            RouteClass(
                name="public",
                prefix="/public",
                policy=BucketPolicy(rate=1 / 0.6, burst=20, entry_ttl_seconds=10 * minute),
            ),
            RouteClass(
                name="analytics",
                prefix="/analytics",
                policy=BucketPolicy(rate=10.0, burst=50, entry_ttl_seconds=5 * minute),
            ),
            RouteClass(
                name="admin",
                prefix="/admin",
                policy=BucketPolicy(rate=1 / 30, burst=3, entry_ttl_seconds=30 * minute),
            ),
        ),
    )


@dataclass(frozen=True)
class AppConfig:
    """Top-level application configuration."""

    environment: str
    auth: AuthConfig
    rate_limit: RateLimitConfig
    brute_force: BruteForceConfig
    headers: SecurityHeadersConfig
    cors: CORSConfig
    errors: ErrorHandlingConfig
    storage: StorageConfig
    logging: LoggingConfig
    security: SecurityConfig

    @property
    def is_production(self) -> bool:
        """Return whether the production bundle is active."""
        return self.environment == ENV_PRODUCTION

    @staticmethod
    def for_environment(
        environment: str = ENV_DEVELOPMENT,
        *,
        private_key_pem: str = "",
        public_key_pem: str = "",
    ) -> "AppConfig":
        """Build the default bundle for an environment without reading env vars."""
        production = environment == ENV_PRODUCTION
        return AppConfig(
            environment=environment,
            auth=AuthConfig(
                private_key_pem=private_key_pem,
                public_key_pem=public_key_pem,
                issuer="wedding-invite-api",
                audience="wedding-invite-clients",
                cookie_secure=True,
            ),
            rate_limit=default_rate_limit_config(),
            brute_force=BruteForceConfig(),
            headers=SecurityHeadersConfig(hsts_enabled=production),
            cors=CORSConfig(),
            errors=ErrorHandlingConfig(
                include_stack_trace=not production,
                log_detailed_errors=not production,
            ),
            storage=StorageConfig(),
            logging=LoggingConfig(level="INFO" if production else "DEBUG"),
            security=SecurityConfig(),
        )

    @staticmethod
    def from_env() -> "AppConfig":
        """Build app config from process environment."""
        environment = _env_str("APP_ENV", ENV_DEVELOPMENT).lower()
        base = AppConfig.for_environment(environment)

        auth = replace(
            base.auth,
            private_key_pem=_read_pem("AUTH_PRIVATE_KEY_PEM", "AUTH_PRIVATE_KEY_PATH"),
            public_key_pem=_read_pem("AUTH_PUBLIC_KEY_PEM", "AUTH_PUBLIC_KEY_PATH"),
            issuer=_env_str("AUTH_ISSUER", base.auth.issuer),
            audience=_env_str("AUTH_AUDIENCE", base.auth.audience),
            algorithm=_env_str("AUTH_ALGORITHM", base.auth.algorithm).upper(),
            access_token_ttl_seconds=_env_int(
                "AUTH_ACCESS_TOKEN_TTL_SECONDS", base.auth.access_token_ttl_seconds
            ),
            refresh_token_ttl_seconds=_env_int(
                "AUTH_REFRESH_TOKEN_TTL_SECONDS", base.auth.refresh_token_ttl_seconds
            ),
            cookie_secure=_env_bool("AUTH_COOKIE_SECURE", base.auth.cookie_secure),
            admin_email=os.getenv("AUTH_ADMIN_EMAIL", "").strip().lower(),
            admin_password=os.getenv("AUTH_ADMIN_PASSWORD", "").strip(),
        )

        classes = []
        for route_class in base.rate_limit.classes:
            env_prefix = f"RATE_LIMIT_{route_class.name.upper()}"
            policy = route_class.policy
            classes.append(
                replace(
                    route_class,
                    policy=replace(
                        policy,
                        rate=_env_float(f"{env_prefix}_RATE", policy.rate),
                        burst=_env_int(f"{env_prefix}_BURST", policy.burst),
                        cleanup_interval_seconds=_env_float(
                            "RATE_LIMIT_CLEANUP_INTERVAL_SECONDS",
                            policy.cleanup_interval_seconds,
                        ),
                        entry_ttl_seconds=_env_float(
                            f"{env_prefix}_TTL_SECONDS", policy.entry_ttl_seconds
                        ),
                    ),
                )
            )
        default_policy = base.rate_limit.default
        rate_limit = RateLimitConfig(
            enabled=_env_bool("RATE_LIMIT_ENABLED", True),
            default=replace(
                default_policy,
                rate=_env_float("RATE_LIMIT_DEFAULT_RATE", default_policy.rate),
                burst=_env_int("RATE_LIMIT_DEFAULT_BURST", default_policy.burst),
                cleanup_interval_seconds=_env_float(
                    "RATE_LIMIT_CLEANUP_INTERVAL_SECONDS",
                    default_policy.cleanup_interval_seconds,
                ),
                entry_ttl_seconds=_env_float(
                    "RATE_LIMIT_DEFAULT_TTL_SECONDS", default_policy.entry_ttl_seconds
                ),
            ),
            classes=tuple(classes),
        )

        brute_force = replace(
            base.brute_force,
            enabled=_env_bool("BRUTE_FORCE_ENABLED", True),
            max_attempts=_env_int("BRUTE_FORCE_MAX_ATTEMPTS", 5),
            attempt_window_seconds=_env_float("BRUTE_FORCE_WINDOW_SECONDS", 15 * 60),
            block_duration_seconds=_env_float("BRUTE_FORCE_BLOCK_SECONDS", 60 * 60),
            cleanup_interval_seconds=_env_float("BRUTE_FORCE_CLEANUP_SECONDS", 5 * 60),
            track_by_ip=_env_bool("BRUTE_FORCE_TRACK_IP", True),
            track_by_email=_env_bool("BRUTE_FORCE_TRACK_EMAIL", True),
        )

        headers = replace(
            base.headers,
            content_security_policy=_env_str(
                "SECURITY_CSP", base.headers.content_security_policy
            ),
            hsts_enabled=_env_bool("SECURITY_HSTS_ENABLED", base.headers.hsts_enabled),
        )

        cors = replace(
            base.cors,
            allowed_origins=_env_list("CORS_ALLOWED_ORIGINS", base.cors.allowed_origins),
            allow_credentials=_env_bool(
                "CORS_ALLOW_CREDENTIALS", base.cors.allow_credentials
            ),
            max_age_seconds=_env_int("CORS_MAX_AGE_SECONDS", base.cors.max_age_seconds),
            strict_origin_checking=_env_bool(
                "CORS_STRICT_ORIGIN_CHECKING", base.cors.strict_origin_checking
            ),
        )

        errors = ErrorHandlingConfig(
            include_stack_trace=_env_bool(
                "ERRORS_INCLUDE_STACK_TRACE", base.errors.include_stack_trace
            ),
            log_detailed_errors=_env_bool(
                "ERRORS_LOG_DETAILED", base.errors.log_detailed_errors
            ),
        )

        storage = StorageConfig(
            redis_url=os.getenv("REDIS_URL", "").strip(),
            mongodb_uri=os.getenv("MONGODB_URI", "").strip(),
            mongodb_db=_env_str("MONGODB_DB", base.storage.mongodb_db),
            store_timeout_seconds=_env_float(
                "STORE_TIMEOUT_SECONDS", base.storage.store_timeout_seconds
            ),
        )

        return replace(
            base,
            auth=auth,
            rate_limit=rate_limit,
            brute_force=brute_force,
            headers=headers,
            cors=cors,
            errors=errors,
            storage=storage,
            logging=LoggingConfig(level=_env_str("LOG_LEVEL", base.logging.level)),
            security=SecurityConfig(
                request_max_bytes=_env_int(
                    "REQUEST_MAX_BYTES", base.security.request_max_bytes
                ),
                trust_forwarded_headers=_env_bool("TRUST_FORWARDED_HEADERS", False),
            ),
        )
