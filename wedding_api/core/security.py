"""Password hashing, password policy and reset-token primitives."""

from __future__ import annotations

import base64
import hashlib
import hmac
import os
import secrets

PASSWORD_MIN_LENGTH = 8
PASSWORD_MAX_LENGTH = 128
PBKDF2_ROUNDS = 120_000
SPECIAL_CHARACTERS = frozenset("!@#$%^&*()_+-=[]{}|;:,.<>?/~`'\"\\")

COMMON_PASSWORDS = frozenset(
    {
        "password",
        "password1",
        "password123",
        "12345678",
        "123456789",
        "1234567890",
        "qwerty123",
        "qwertyuiop",
        "iloveyou",
        "sunshine1",
        "letmein1",
        "welcome1",
        "admin123",
        "football1",
        "princess1",
        "p@ssw0rd",
        "passw0rd!",
        "weddingday",
        "justmarried",
    }
)


def _b64url_encode(raw: bytes) -> str:
    """Return URL-safe base64 string without padding."""
    return base64.urlsafe_b64encode(raw).decode("utf-8").rstrip("=")


def _b64url_decode(value: str) -> bytes:
    """Decode URL-safe base64 string with optional missing padding."""
    padding = "=" * (-len(value) % 4)
    return base64.urlsafe_b64decode((value + padding).encode("utf-8"))


def hash_password(password: str) -> str:
    """Hash password using PBKDF2-HMAC-SHA256 with random salt."""
    salt = os.urandom(16)
    derived = hashlib.pbkdf2_hmac(
        "sha256", password.encode("utf-8"), salt, PBKDF2_ROUNDS
    )
    return f"pbkdf2_sha256${PBKDF2_ROUNDS}${_b64url_encode(salt)}${_b64url_encode(derived)}"


def verify_password(password: str, stored_hash: str) -> bool:
    """Verify password against a stored PBKDF2 hash."""
    try:
        algo, rounds_raw, salt_b64, digest_b64 = stored_hash.split("$", 3)
        if algo != "pbkdf2_sha256":
            return False
        rounds = int(rounds_raw)
        salt = _b64url_decode(salt_b64)
        expected = _b64url_decode(digest_b64)
    except ValueError:
        return False

    derived = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, rounds)
    return hmac.compare_digest(derived, expected)


def password_policy_violations(password: str) -> list[str]:
    """Return human-readable reasons a password is too weak; empty when it passes."""
    problems: list[str] = []
    if len(password) < PASSWORD_MIN_LENGTH:
        problems.append(f"Password must be at least {PASSWORD_MIN_LENGTH} characters")
    if len(password) > PASSWORD_MAX_LENGTH:
        problems.append(f"Password must be at most {PASSWORD_MAX_LENGTH} characters")
    if not any(ch.isupper() for ch in password):
        problems.append("Password must contain an uppercase letter")
    if not any(ch.islower() for ch in password):
        problems.append("Password must contain a lowercase letter")
    if not any(ch.isdigit() for ch in password):
        problems.append("Password must contain a digit")
    if not any(ch in SPECIAL_CHARACTERS for ch in password):
        problems.append("Password must contain a special character")
    if password.lower() in COMMON_PASSWORDS:
        problems.append("Password is too common")
    return problems


def new_reset_token() -> str:
    """Return a fresh single-use password reset token."""
    return secrets.token_hex(32)


def digest_token(token: str) -> str:
    """Hash raw token for storage/comparison."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def device_fingerprint(device_info: str, user_agent: str) -> str:
    """Derive a stable device id from client-supplied info and the user agent."""
    return hashlib.sha256(f"{device_info}{user_agent}".encode("utf-8")).hexdigest()
