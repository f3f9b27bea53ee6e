"""Application factory: build the security components and mount the routers."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable

from fastapi import FastAPI

from wedding_api.api.contracts import HealthResponse
from wedding_api.api.http_setup import register_exception_handlers, register_http_middleware
from wedding_api.auth.notifier import AuthNotifier, LoggingNotifier
from wedding_api.auth.repository import UserRepository
from wedding_api.auth.router import create_admin_router, create_auth_router
from wedding_api.auth.service import AuthService
from wedding_api.core.config import AppConfig
from wedding_api.core.mongo_migrations import migrate_if_configured
from wedding_api.security.abuse_guard import AbuseGuard
from wedding_api.security.credentials import CredentialService
from wedding_api.security.denylist import InMemoryTokenStore, RedisTokenStore, TokenStore
from wedding_api.security.error_funnel import ErrorFunnel
from wedding_api.security.gates import AuthGate
from wedding_api.security.keys import KeyPair
from wedding_api.security.rate_limiter import RouteRateLimiter
from wedding_api.weddings.repository import WeddingRepository
from wedding_api.weddings.router import create_public_router, create_weddings_router
from wedding_api.weddings.service import WeddingService

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class AppComponents:
    """Long-lived collaborators shared by every request."""

    keys: KeyPair
    credentials: CredentialService
    tokens: TokenStore
    gate: AuthGate
    rate_limiter: RouteRateLimiter
    abuse_guard: AbuseGuard
    funnel: ErrorFunnel
    auth_service: AuthService
    wedding_service: WeddingService


def load_keys(config: AppConfig) -> KeyPair:
    """Load the signing keypair; development falls back to an ephemeral one."""
    auth = config.auth
    if auth.private_key_pem:
        return KeyPair.from_pem(
            auth.private_key_pem, auth.public_key_pem or None, algorithm=auth.algorithm
        )
    if config.is_production:
        raise RuntimeError(
            "AUTH_PRIVATE_KEY_PEM or AUTH_PRIVATE_KEY_PATH must be set in production"
        )
    LOGGER.warning("auth_keys_generated_ephemeral")
    return KeyPair.generate(algorithm=auth.algorithm)


def _build_token_store(config: AppConfig, clock: Callable[[], float]) -> TokenStore:
    if config.storage.redis_url:
        return RedisTokenStore.from_url(
            config.storage.redis_url,
            timeout_seconds=config.storage.store_timeout_seconds,
        )
    return InMemoryTokenStore(clock=clock)


def build_components(
    config: AppConfig,
    *,
    keys: KeyPair | None = None,
    token_store: TokenStore | None = None,
    users: UserRepository | None = None,
    weddings: WeddingRepository | None = None,
    notifier: AuthNotifier | None = None,
    clock: Callable[[], float] | None = None,
) -> AppComponents:
    """Construct every component from config, honouring injected collaborators."""
    wall_clock = clock or time.time
    keys = keys or load_keys(config)
    credentials = CredentialService(keys=keys, config=config.auth, clock=wall_clock)
    tokens = token_store or _build_token_store(config, wall_clock)
    users = users or UserRepository(
        mongo_uri=config.storage.mongodb_uri, mongo_db=config.storage.mongodb_db
    )
    weddings = weddings or WeddingRepository(
        mongo_uri=config.storage.mongodb_uri, mongo_db=config.storage.mongodb_db
    )
    gate = AuthGate(credentials=credentials, denylist=tokens)
    return AppComponents(
        keys=keys,
        credentials=credentials,
        tokens=tokens,
        gate=gate,
        rate_limiter=RouteRateLimiter(config.rate_limit, clock=clock or time.monotonic),
        abuse_guard=AbuseGuard(config.brute_force, clock=wall_clock),
        funnel=ErrorFunnel(
            config.errors,
            trust_forwarded_headers=config.security.trust_forwarded_headers,
        ),
        auth_service=AuthService(
            users=users,
            credentials=credentials,
            tokens=tokens,
            config=config.auth,
            notifier=notifier or LoggingNotifier(),
        ),
        wedding_service=WeddingService(weddings),
    )


def create_app(
    config: AppConfig,
    *,
    components: AppComponents | None = None,
    run_migrations: bool = True,
) -> FastAPI:
    """Build the FastAPI app with the full security chain."""
    components = components or build_components(config)
    app = FastAPI(title="Wedding Invite API", version="1.0.0")
    app.state.components = components

    register_http_middleware(
        app,
        config=config,
        rate_limiter=components.rate_limiter,
        abuse_guard=components.abuse_guard,
        funnel=components.funnel,
        logger=LOGGER,
    )
    register_exception_handlers(app, funnel=components.funnel)

    components.auth_service.bootstrap_admin_user()
    app.include_router(
        create_auth_router(
            components.auth_service,
            components.gate,
            cookie_secure=config.auth.cookie_secure,
        )
    )
    app.include_router(create_admin_router(components.auth_service, components.gate))
    app.include_router(create_weddings_router(components.wedding_service, components.gate))
    app.include_router(create_public_router(components.wedding_service, components.gate))

    @app.on_event("startup")
    async def start_background_work() -> None:
        if run_migrations:
            migrate_if_configured(
                mongo_uri=config.storage.mongodb_uri, mongo_db=config.storage.mongodb_db
            )
        if config.rate_limit.enabled:
            await components.rate_limiter.start()
        if config.brute_force.enabled:
            await components.abuse_guard.sweeper.start()

    @app.on_event("shutdown")
    async def stop_background_work() -> None:
        await components.rate_limiter.stop()
        await components.abuse_guard.sweeper.stop()
        await components.tokens.close()

    @app.get("/health", response_model=HealthResponse)
    def health() -> HealthResponse:
        return HealthResponse(status="ok")

    return app
