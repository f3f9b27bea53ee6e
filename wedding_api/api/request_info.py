"""Helpers for reading caller metadata off a request."""

from __future__ import annotations

from starlette.requests import Request


def client_ip(request: Request, *, trust_forwarded_headers: bool = False) -> str:
    """Return the caller IP, honouring proxy headers only when trusted."""
    if trust_forwarded_headers:
        forwarded_for = request.headers.get("x-forwarded-for", "")
        if forwarded_for:
            return forwarded_for.split(",")[0].strip()
        real_ip = request.headers.get("x-real-ip", "").strip()
        if real_ip:
            return real_ip
    return (request.client.host if request.client else "") or "unknown"


def user_agent(request: Request) -> str:
    """Return the User-Agent header or an empty string."""
    return request.headers.get("user-agent", "")


def caller_subject(request: Request) -> str:
    """Return the authenticated subject attached by the auth gate, if any."""
    caller = getattr(request.state, "caller", None)
    return str(getattr(caller, "subject", "") or "")
