"""Versioned MongoDB schema migrations for the user and wedding collections."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable

import pymongo
from pymongo.errors import PyMongoError

from wedding_api.core.logging import CORRELATION_ID_CTX

LOGGER = logging.getLogger(__name__)

MigrationFn = Callable[[Any], None]


def _migration_20260301_01_user_indexes(db: Any) -> None:
    db["users"].create_index("email", unique=True)
    db["users"].create_index("user_id", unique=True)
    db["users"].create_index("created_at")


def _migration_20260301_02_wedding_indexes(db: Any) -> None:
    db["weddings"].create_index("wedding_id", unique=True)
    db["weddings"].create_index("slug", unique=True)
    db["weddings"].create_index([("owner_id", pymongo.ASCENDING), ("created_at", pymongo.DESCENDING)])


MIGRATIONS: list[tuple[str, MigrationFn]] = [
    ("20260301_01_user_indexes", _migration_20260301_01_user_indexes),
    ("20260301_02_wedding_indexes", _migration_20260301_02_wedding_indexes),
]


def apply_mongo_migrations(db: Any) -> list[str]:
    """Apply pending migrations to ``db`` and return the ids that ran."""
    migration_collection = db["schema_migrations"]
    migration_collection.create_index("migration_id", unique=True)

    applied: list[str] = []
    for migration_id, migration_fn in MIGRATIONS:
        if migration_collection.find_one({"migration_id": migration_id}):
            continue
        migration_fn(db)
        migration_collection.insert_one(
            {
                "migration_id": migration_id,
                "applied_at": datetime.now(timezone.utc),
                "correlation_id": CORRELATION_ID_CTX.get(),
            }
        )
        applied.append(migration_id)
    return applied


def migrate_if_configured(*, mongo_uri: str, mongo_db: str) -> list[str]:
    """Connect to ``mongo_uri`` when set and apply migrations."""
    if not mongo_uri:
        return []

    client: Any = pymongo.MongoClient(mongo_uri, serverSelectionTimeoutMS=3000)
    try:
        client.admin.command("ping")
        applied = apply_mongo_migrations(client[mongo_db])
    except PyMongoError:
        LOGGER.exception("mongo_migrations_failed")
        raise
    finally:
        client.close()
    if applied:
        LOGGER.info("mongo_migrations_applied %s", ",".join(applied))
    return applied
