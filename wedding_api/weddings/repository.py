"""Repository for wedding pages."""

from __future__ import annotations

import time
from threading import Lock
from typing import Any

from pymongo import DESCENDING, MongoClient
from pymongo.errors import DuplicateKeyError

from wedding_api.weddings.models import WeddingRecord


class DuplicateSlugError(ValueError):
    """Raised when another wedding already owns the slug."""


class WeddingRepository:
    """Wedding repository with MongoDB primary and in-process fallback."""

    def __init__(
        self,
        *,
        mongo_uri: str = "",
        mongo_db: str = "wedding_invite",
        timeout_seconds: float = 3.0,
    ) -> None:
        """Initialize storage; without ``mongo_uri`` weddings live in memory."""
        self._lock = Lock()
        self._weddings: dict[str, WeddingRecord] = {}
        self._mongo_weddings: Any = None

        if mongo_uri:
            timeout_ms = int(timeout_seconds * 1000)
            client: Any = MongoClient(
                mongo_uri,
                serverSelectionTimeoutMS=timeout_ms,
                socketTimeoutMS=timeout_ms,
            )
            self._mongo_weddings = client[mongo_db]["weddings"]

    def insert(self, wedding: WeddingRecord) -> WeddingRecord:
        """Insert a wedding; the slug must be unused."""
        now = int(time.time())
        wedding = wedding.model_copy(update={"created_at": now, "updated_at": now})
        if self._mongo_weddings is not None:
            try:
                self._mongo_weddings.insert_one(wedding.model_dump(mode="json"))
            except DuplicateKeyError as exc:
                raise DuplicateSlugError(wedding.slug) from exc
            return wedding
        with self._lock:
            if any(existing.slug == wedding.slug for existing in self._weddings.values()):
                raise DuplicateSlugError(wedding.slug)
            self._weddings[wedding.wedding_id] = wedding
        return wedding.model_copy()

    def get_by_id(self, wedding_id: str) -> WeddingRecord | None:
        if self._mongo_weddings is not None:
            doc = self._mongo_weddings.find_one({"wedding_id": wedding_id}, {"_id": 0})
            return WeddingRecord.model_validate(doc) if doc else None
        with self._lock:
            wedding = self._weddings.get(wedding_id)
            return wedding.model_copy() if wedding else None

    def get_by_slug(self, slug: str) -> WeddingRecord | None:
        if self._mongo_weddings is not None:
            doc = self._mongo_weddings.find_one({"slug": slug}, {"_id": 0})
            return WeddingRecord.model_validate(doc) if doc else None
        with self._lock:
            for wedding in self._weddings.values():
                if wedding.slug == slug:
                    return wedding.model_copy()
        return None

    def list_weddings(self, *, owner_id: str | None = None, limit: int = 100) -> list[WeddingRecord]:
        """Return newest weddings first, optionally for one owner."""
        if self._mongo_weddings is not None:
            query = {"owner_id": owner_id} if owner_id else {}
            cursor = self._mongo_weddings.find(query, {"_id": 0}).sort("created_at", DESCENDING)
            return [WeddingRecord.model_validate(doc) for doc in cursor.limit(limit)]
        with self._lock:
            weddings = [
                wedding
                for wedding in self._weddings.values()
                if owner_id is None or wedding.owner_id == owner_id
            ]
        weddings.sort(key=lambda wedding: wedding.created_at, reverse=True)
        return [wedding.model_copy() for wedding in weddings[:limit]]

    def set_published(self, wedding_id: str, published: bool) -> WeddingRecord | None:
        """Flip the published flag and return the updated record."""
        changes = {"published": published, "updated_at": int(time.time())}
        if self._mongo_weddings is not None:
            self._mongo_weddings.update_one({"wedding_id": wedding_id}, {"$set": changes})
            return self.get_by_id(wedding_id)
        with self._lock:
            wedding = self._weddings.get(wedding_id)
            if wedding is None:
                return None
            wedding = wedding.model_copy(update=changes)
            self._weddings[wedding_id] = wedding
        return wedding.model_copy()
