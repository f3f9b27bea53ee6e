"""Request validation: semantic field classes, field-error reporting, sanitizing.

Request bodies are declared as pydantic models whose fields use the annotated
types below (``Slug``, ``ObjectId``, ``Phone``, ``HttpUrl``, ``SafeHtml``,
``Email``). Pydantic compiles each model once and evaluates every constraint,
so all failing fields are reported together. ``field_errors`` turns pydantic
errors into ``{field, tag, message}`` entries for the error envelope.
"""

from __future__ import annotations

import re
from typing import Annotated, Any, Iterable, Sequence, TypeVar

from pydantic import AfterValidator, BaseModel, StringConstraints, ValidationError
from pydantic_core import PydanticCustomError

from wedding_api.api.errors import ApiError, ApiErrorCode

ModelT = TypeVar("ModelT", bound=BaseModel)

SLUG_MIN_LENGTH = 3
SLUG_MAX_LENGTH = 50
URL_MAX_LENGTH = 2048
EMAIL_MAX_LENGTH = 254
SAFE_HTML_MAX_LENGTH = 5000

_SLUG_RE = re.compile(r"^[a-z0-9]+(?:-[a-z0-9]+)*$")
_OBJECT_ID_RE = re.compile(r"^[0-9a-fA-F]{24}$")
_PHONE_STRIP_RE = re.compile(r"[\s\-()]")
_URL_RE = re.compile(r"^https?://[^\s/$.?#].[^\s]*$", re.IGNORECASE)
_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_CONTROL_CHARS_RE = re.compile(r"[\x00-\x08\x0b-\x1f\x7f-\x9f]")

DANGEROUS_HTML_PATTERNS = tuple(
    re.compile(pattern, re.IGNORECASE | re.DOTALL)
    for pattern in (
        r"<script\b[^>]*>",
        r"<iframe\b[^>]*>",
        r"<object\b[^>]*>",
        r"<embed\b[^>]*>",
        r"<form\b[^>]*>",
        r"javascript:",
        r"vbscript:",
        r"\bon(?:load|error|click|mouseover)\s*=",
    )
)

MESSAGES = {
    "slug": "Invalid slug format (use lowercase letters, numbers, and hyphens only)",
    "objectid": "Invalid ID format",
    "phone": "Invalid phone number format",
    "url": "Invalid URL format",
    "safehtml": "HTML content contains unsafe elements",
    "email": "Invalid email format",
}

# pydantic error type -> constraint tag
_TAG_BY_ERROR_TYPE = {
    "missing": "required",
    "string_too_short": "min",
    "string_too_long": "max",
    "too_short": "min",
    "too_long": "max",
    "greater_than_equal": "min",
    "less_than_equal": "max",
    "literal_error": "oneof",
    "enum": "oneof",
    "extra_forbidden": "unknown",
    "string_type": "type",
    "int_parsing": "type",
    "int_type": "type",
    "bool_parsing": "type",
    "bool_type": "type",
    "date_from_datetime_parsing": "date",
    "date_parsing": "date",
}

# Failures of the bind phase rather than of a field constraint.
STRUCTURAL_ERROR_TYPES = frozenset(
    {"json_invalid", "json_type", "model_attributes_type", "dict_type", "model_type"}
)


def is_valid_slug(value: str) -> bool:
    """3-50 chars of ``[a-z0-9-]`` without edge or doubled hyphens."""
    return SLUG_MIN_LENGTH <= len(value) <= SLUG_MAX_LENGTH and bool(_SLUG_RE.match(value))


def is_valid_object_id(value: str) -> bool:
    return bool(_OBJECT_ID_RE.match(value))


def is_valid_phone(value: str) -> bool:
    """Digits only once separators and a leading ``+`` are removed, 10-15 long."""
    digits = _PHONE_STRIP_RE.sub("", value)
    if digits.startswith("+"):
        digits = digits[1:]
    return digits.isascii() and digits.isdigit() and 10 <= len(digits) <= 15


def is_valid_url(value: str) -> bool:
    return 0 < len(value) <= URL_MAX_LENGTH and bool(_URL_RE.match(value))


def is_safe_html(value: str) -> bool:
    return not any(pattern.search(value) for pattern in DANGEROUS_HTML_PATTERNS)


def is_valid_email(value: str) -> bool:
    return len(value) <= EMAIL_MAX_LENGTH and bool(_EMAIL_RE.match(value))


def strip_control_characters(value: str) -> str:
    """Drop NUL and control characters, keeping newline and tab."""
    return _CONTROL_CHARS_RE.sub("", value)


def _checker(tag: str, predicate):
    def _check(value: str) -> str:
        if not predicate(value):
            raise PydanticCustomError(tag, MESSAGES[tag])
        return value

    _check.__name__ = f"check_{tag}"
    return _check


def _normalize_email(value: str) -> str:
    value = value.strip().lower()
    if not is_valid_email(value):
        raise PydanticCustomError("email", MESSAGES["email"])
    return value


Slug = Annotated[str, AfterValidator(_checker("slug", is_valid_slug))]
ObjectId = Annotated[str, AfterValidator(_checker("objectid", is_valid_object_id))]
Phone = Annotated[str, AfterValidator(_checker("phone", is_valid_phone))]
HttpUrl = Annotated[str, AfterValidator(_checker("url", is_valid_url))]
SafeHtml = Annotated[
    str,
    StringConstraints(max_length=SAFE_HTML_MAX_LENGTH),
    AfterValidator(_checker("safehtml", is_safe_html)),
]
Email = Annotated[str, AfterValidator(_normalize_email)]


def _field_name(loc: Sequence[Any]) -> str:
    parts = [str(part) for part in loc]
    if parts and parts[0] in {"body", "query", "path", "header", "cookie"}:
        parts = parts[1:]
    return ".".join(parts)


def _message(field: str, tag: str, error: dict[str, Any]) -> str:
    ctx = error.get("ctx") or {}
    if tag == "required":
        return f"{field} is required"
    if tag == "min" and "min_length" in ctx:
        return f"{field} must be at least {ctx['min_length']} characters"
    if tag == "max" and "max_length" in ctx:
        return f"{field} must be at most {ctx['max_length']} characters"
    if tag == "oneof" and "expected" in ctx:
        return f"{field} must be one of: {ctx['expected']}"
    if tag in MESSAGES:
        return MESSAGES[tag]
    return str(error.get("msg") or f"{field} failed on {tag} validation")


def field_errors(errors: Iterable[dict[str, Any]]) -> list[dict[str, str]]:
    """Convert pydantic errors into ``{field, tag, message}`` entries."""
    result: list[dict[str, str]] = []
    for error in errors:
        error_type = str(error.get("type", ""))
        field = _field_name(error.get("loc", ()))
        tag = _TAG_BY_ERROR_TYPE.get(error_type, error_type)
        result.append({"field": field, "tag": tag, "message": _message(field, tag, error)})
    return result


def is_structural_failure(errors: Sequence[dict[str, Any]]) -> bool:
    """Return True when the payload could not be bound at all."""
    for error in errors:
        if str(error.get("type", "")) in STRUCTURAL_ERROR_TYPES:
            return True
        loc = tuple(error.get("loc", ()))
        if error.get("type") == "missing" and loc in {("body",), ()}:
            return True
    return False


def api_error_from_errors(errors: Sequence[dict[str, Any]], *, source: str = "body") -> ApiError:
    """Map validation errors to ``INVALID_INPUT`` or ``VALIDATION_ERROR``."""
    if is_structural_failure(errors):
        message = (
            "Invalid request body format" if source == "body" else "Invalid query parameters"
        )
        return ApiError(error_code=ApiErrorCode.INVALID_INPUT, message=message)
    return ApiError(
        error_code=ApiErrorCode.VALIDATION_ERROR,
        message="Request validation failed",
        details=field_errors(errors),
    )


def validate_payload(model: type[ModelT], data: Any, *, source: str = "body") -> ModelT:
    """Bind ``data`` to ``model`` or raise an ``ApiError`` listing every failure."""
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        raise api_error_from_errors(exc.errors(), source=source) from exc
