"""ASGI middleware that strips control characters from query and form input."""

from __future__ import annotations

from typing import Any, Awaitable, Callable
from urllib.parse import parse_qsl, urlencode

from wedding_api.security.validation import strip_control_characters

Message = dict[str, Any]
Receive = Callable[[], Awaitable[Message]]
Send = Callable[[Message], Awaitable[None]]
ASGIApp = Callable[[dict[str, Any], Receive, Send], Awaitable[None]]

MUTATING_METHODS = frozenset({"POST", "PUT", "PATCH"})
FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"


def sanitize_urlencoded(raw: bytes) -> bytes:
    """Return ``raw`` with control characters removed from every key and value."""
    if not raw:
        return raw
    pairs = parse_qsl(
        raw.decode("utf-8", "replace"), keep_blank_values=True, encoding="utf-8"
    )
    cleaned = [(strip_control_characters(k), strip_control_characters(v)) for k, v in pairs]
    if cleaned == pairs:
        return raw
    return urlencode(cleaned).encode("ascii")


def _header(scope: dict[str, Any], name: bytes) -> str:
    for key, value in scope.get("headers") or []:
        if key.lower() == name:
            return value.decode("latin-1")
    return ""


class SanitizeInputMiddleware:
    """Rewrite the query string of every request and urlencoded bodies of writes."""

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: dict[str, Any], receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        scope = dict(scope)
        scope["query_string"] = sanitize_urlencoded(scope.get("query_string", b""))

        content_type = _header(scope, b"content-type").split(";")[0].strip().lower()
        if scope.get("method") in MUTATING_METHODS and content_type == FORM_CONTENT_TYPE:
            body = await self._read_body(receive)
            cleaned = sanitize_urlencoded(body)
            scope["headers"] = [
                (key, value)
                for key, value in scope.get("headers") or []
                if key.lower() != b"content-length"
            ] + [(b"content-length", str(len(cleaned)).encode("latin-1"))]
            receive = self._replay(cleaned, receive)

        await self.app(scope, receive, send)

    @staticmethod
    async def _read_body(receive: Receive) -> bytes:
        chunks: list[bytes] = []
        while True:
            message = await receive()
            if message["type"] != "http.request":
                break
            chunks.append(message.get("body", b""))
            if not message.get("more_body", False):
                break
        return b"".join(chunks)

    @staticmethod
    def _replay(body: bytes, receive: Receive) -> Receive:
        sent = False

        async def replay() -> Message:
            nonlocal sent
            if not sent:
                sent = True
                return {"type": "http.request", "body": body, "more_body": False}
            return await receive()

        return replay
