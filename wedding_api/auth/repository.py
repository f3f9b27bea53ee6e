"""Repository for user accounts."""

from __future__ import annotations

import time
from threading import Lock
from typing import Any

from bson import ObjectId
from pymongo import ASCENDING, MongoClient
from pymongo.errors import DuplicateKeyError

from wedding_api.auth.models import UserRecord, UserStatus


class DuplicateEmailError(ValueError):
    """Raised when an account already uses the email."""


def new_object_id() -> str:
    """Return a fresh 24-hex identifier."""
    return str(ObjectId())


class UserRepository:
    """User repository with MongoDB primary and in-process fallback."""

    def __init__(
        self,
        *,
        mongo_uri: str = "",
        mongo_db: str = "wedding_invite",
        timeout_seconds: float = 3.0,
    ) -> None:
        """Initialize storage; without ``mongo_uri`` users live in memory."""
        self._lock = Lock()
        self._users: dict[str, UserRecord] = {}
        self._mongo_users: Any = None

        if mongo_uri:
            timeout_ms = int(timeout_seconds * 1000)
            client: Any = MongoClient(
                mongo_uri,
                serverSelectionTimeoutMS=timeout_ms,
                socketTimeoutMS=timeout_ms,
            )
            self._mongo_users = client[mongo_db]["users"]

    @property
    def persistent(self) -> bool:
        return self._mongo_users is not None

    def get_by_email(self, email: str) -> UserRecord | None:
        """Get user by normalized email."""
        key = email.strip().lower()
        if self._mongo_users is not None:
            doc = self._mongo_users.find_one({"email": key}, {"_id": 0})
            return UserRecord.model_validate(doc) if doc else None
        with self._lock:
            for user in self._users.values():
                if user.email == key:
                    return user.model_copy()
        return None

    def get_by_id(self, user_id: str) -> UserRecord | None:
        """Get user by id."""
        if self._mongo_users is not None:
            doc = self._mongo_users.find_one({"user_id": user_id}, {"_id": 0})
            return UserRecord.model_validate(doc) if doc else None
        with self._lock:
            user = self._users.get(user_id)
            return user.model_copy() if user else None

    def insert(self, user: UserRecord) -> UserRecord:
        """Insert a new user; the email must be unused."""
        now = int(time.time())
        user = user.model_copy(
            update={"email": user.email.strip().lower(), "created_at": now, "updated_at": now}
        )
        if self._mongo_users is not None:
            try:
                self._mongo_users.insert_one(user.model_dump(mode="json"))
            except DuplicateKeyError as exc:
                raise DuplicateEmailError(user.email) from exc
            return user
        with self._lock:
            if any(existing.email == user.email for existing in self._users.values()):
                raise DuplicateEmailError(user.email)
            self._users[user.user_id] = user
        return user.model_copy()

    def _update(self, user_id: str, changes: dict[str, Any]) -> bool:
        changes = {**changes, "updated_at": int(time.time())}
        if self._mongo_users is not None:
            result = self._mongo_users.update_one({"user_id": user_id}, {"$set": changes})
            return result.matched_count > 0
        with self._lock:
            user = self._users.get(user_id)
            if user is None:
                return False
            self._users[user_id] = user.model_copy(update=changes)
        return True

    def set_status(self, user_id: str, status: UserStatus) -> bool:
        """Change account status."""
        return self._update(user_id, {"status": str(status)})

    def set_password_hash(self, user_id: str, password_hash: str) -> bool:
        """Replace the stored password hash."""
        return self._update(user_id, {"password_hash": password_hash})

    def list_users(self, *, limit: int = 100) -> list[UserRecord]:
        """Return users ordered by creation time."""
        if self._mongo_users is not None:
            cursor = self._mongo_users.find({}, {"_id": 0}).sort("created_at", ASCENDING)
            return [UserRecord.model_validate(doc) for doc in cursor.limit(limit)]
        with self._lock:
            users = sorted(self._users.values(), key=lambda user: user.created_at)
            return [user.model_copy() for user in users[:limit]]
