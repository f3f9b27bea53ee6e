"""Wedding page ownership and publication rules."""

from __future__ import annotations

import logging

from wedding_api.api.errors import ApiError, ApiErrorCode
from wedding_api.auth.repository import new_object_id
from wedding_api.security.gates import CallerIdentity
from wedding_api.weddings.models import WeddingCreateRequest, WeddingRecord
from wedding_api.weddings.repository import DuplicateSlugError, WeddingRepository

LOGGER = logging.getLogger(__name__)


class WeddingService:
    """Create, read and publish wedding pages on behalf of a caller."""

    def __init__(self, repo: WeddingRepository, *, logger: logging.Logger = LOGGER) -> None:
        self._repo = repo
        self._logger = logger

    def create(self, caller: CallerIdentity, req: WeddingCreateRequest) -> WeddingRecord:
        """Create a draft page owned by the caller."""
        data = req.model_dump()
        data["event_date"] = req.event_date.isoformat() if req.event_date else None
        try:
            wedding = self._repo.insert(
                WeddingRecord(wedding_id=new_object_id(), owner_id=caller.subject, **data)
            )
        except DuplicateSlugError as exc:
            raise ApiError(
                error_code=ApiErrorCode.CONFLICT, message="Slug is already taken"
            ) from exc
        self._logger.info("wedding_created", extra={"subject": caller.subject})
        return wedding

    def list_for(self, caller: CallerIdentity, *, limit: int = 100) -> list[WeddingRecord]:
        """Admins see every page, other callers only their own."""
        owner_id = None if caller.is_admin else caller.subject
        return self._repo.list_weddings(owner_id=owner_id, limit=limit)

    def get(self, caller: CallerIdentity, wedding_id: str) -> WeddingRecord:
        """Return a page the caller owns (or any page for admins)."""
        wedding = self._repo.get_by_id(wedding_id)
        if wedding is None:
            raise ApiError(error_code=ApiErrorCode.NOT_FOUND, message="Wedding not found")
        if wedding.owner_id != caller.subject and not caller.is_admin:
            raise ApiError(
                error_code=ApiErrorCode.FORBIDDEN,
                message="You do not have access to this wedding",
            )
        return wedding

    def publish(self, caller: CallerIdentity, wedding_id: str) -> WeddingRecord:
        """Make a page visible under its public slug."""
        wedding = self.get(caller, wedding_id)
        updated = self._repo.set_published(wedding.wedding_id, True)
        if updated is None:
            raise ApiError(error_code=ApiErrorCode.NOT_FOUND, message="Wedding not found")
        return updated

    def public_page(self, slug: str, caller: CallerIdentity | None) -> WeddingRecord:
        """Return a published page; drafts are visible only to owner and admins."""
        wedding = self._repo.get_by_slug(slug)
        if wedding is None:
            raise ApiError(error_code=ApiErrorCode.NOT_FOUND, message="Wedding not found")
        if wedding.published:
            return wedding
        if caller is not None and (caller.is_admin or caller.subject == wedding.owner_id):
            return wedding
        raise ApiError(error_code=ApiErrorCode.NOT_FOUND, message="Wedding not found")
