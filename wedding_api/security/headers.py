"""Response hardening headers and the CORS origin gate."""

from __future__ import annotations

import logging
from typing import Callable

from fastapi import Request
from fastapi.responses import Response

from wedding_api.api.errors import ApiErrorCode, error_response
from wedding_api.core.config import CORSConfig, SecurityHeadersConfig

LOGGER = logging.getLogger(__name__)


def build_security_headers(config: SecurityHeadersConfig) -> dict[str, str]:
    """Return the fixed header set applied to every response."""
    headers = {
        "Content-Security-Policy": config.content_security_policy,
        "X-Frame-Options": config.frame_options,
        "X-Content-Type-Options": config.content_type_options,
        "X-XSS-Protection": config.xss_protection,
        "Referrer-Policy": config.referrer_policy,
        "Permissions-Policy": config.permissions_policy,
        "Cross-Origin-Embedder-Policy": config.cross_origin_embedder_policy,
        "Cross-Origin-Opener-Policy": config.cross_origin_opener_policy,
        "Cross-Origin-Resource-Policy": config.cross_origin_resource_policy,
        "X-Download-Options": "noopen",
        "X-Permitted-Cross-Domain-Policies": "none",
    }
    if config.hsts_enabled:
        headers["Strict-Transport-Security"] = config.hsts_value
    headers.update(config.custom_headers)
    return {name: value for name, value in headers.items() if value}


def apply_security_headers(response: Response, headers: dict[str, str]) -> Response:
    """Decorate a response in place and drop any ``Server`` header."""
    for name, value in headers.items():
        response.headers[name] = value
    if "server" in response.headers:
        del response.headers["server"]
    return response


def create_security_headers_middleware(config: SecurityHeadersConfig) -> Callable:
    """Create middleware that decorates every response."""
    headers = build_security_headers(config)

    async def security_headers_middleware(request: Request, call_next: Callable):
        """Apply hardening headers after the rest of the chain ran."""
        response = await call_next(request)
        return apply_security_headers(response, headers)

    return security_headers_middleware


def _normalize_origin(origin: str) -> str:
    return origin.strip().rstrip("/").lower()


class CORSPolicy:
    """Origin whitelist with exact, subdomain-wildcard and optional ``*`` entries."""

    def __init__(self, config: CORSConfig) -> None:
        """Pre-split the configured origins."""
        self.config = config
        self._exact: set[str] = set()
        self._wildcards: list[tuple[str, str]] = []
        self._allow_any = False
        for entry in config.allowed_origins:
            normalized = _normalize_origin(entry)
            if normalized == "*":
                self._allow_any = True
                continue
            scheme, sep, rest = normalized.partition("://")
            if not sep:
                scheme, rest = "https", normalized
            if rest.startswith("*."):
                self._wildcards.append((scheme, rest[1:]))
            else:
                self._exact.add(f"{scheme}://{rest}")

    def is_allowed(self, origin: str) -> bool:
        """Return whether ``origin`` may read responses."""
        normalized = _normalize_origin(origin)
        if not normalized:
            return False
        if normalized in self._exact:
            return True
        scheme, sep, rest = normalized.partition("://")
        if sep:
            for wildcard_scheme, suffix in self._wildcards:
                if scheme == wildcard_scheme and rest.endswith(suffix) and len(rest) > len(suffix):
                    return True
        return self._allow_any and not self.config.strict_origin_checking

    def preflight_headers(self, origin: str) -> dict[str, str]:
        headers = self.response_headers(origin)
        headers.update(
            {
                "Access-Control-Allow-Methods": ", ".join(self.config.allowed_methods),
                "Access-Control-Allow-Headers": ", ".join(self.config.allowed_headers),
                "Access-Control-Max-Age": str(self.config.max_age_seconds),
            }
        )
        return headers

    def response_headers(self, origin: str) -> dict[str, str]:
        headers = {"Access-Control-Allow-Origin": origin, "Vary": "Origin"}
        if self.config.allow_credentials:
            headers["Access-Control-Allow-Credentials"] = "true"
        if self.config.exposed_headers:
            headers["Access-Control-Expose-Headers"] = ", ".join(self.config.exposed_headers)
        return headers


def create_cors_middleware(policy: CORSPolicy, *, logger: logging.Logger = LOGGER) -> Callable:
    """Create middleware answering preflights and tagging allowed origins."""

    async def cors_middleware(request: Request, call_next: Callable):
        """Answer preflight requests; echo allow-origin on actual requests."""
        origin = request.headers.get("origin", "")
        if not origin:
            return await call_next(request)

        allowed = policy.is_allowed(origin)
        if request.method == "OPTIONS":
            if not allowed:
                logger.warning(
                    "cors_origin_rejected",
                    extra={"path": request.url.path, "method": request.method},
                )
                return error_response(ApiErrorCode.FORBIDDEN, "Origin not allowed")
            return Response(status_code=204, headers=policy.preflight_headers(origin))

        response = await call_next(request)
        if allowed:
            for name, value in policy.response_headers(origin).items():
                response.headers[name] = value
        return response

    return cors_middleware
