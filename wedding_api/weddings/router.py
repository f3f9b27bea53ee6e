"""FastAPI routers for wedding pages."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from wedding_api.api.contracts import ApiErrorResponse, WeddingResponse, WeddingsListResponse
from wedding_api.api.errors import ApiError, ApiErrorCode
from wedding_api.security.gates import AuthGate, CallerIdentity
from wedding_api.security.validation import is_valid_slug, validate_payload
from wedding_api.weddings.models import WeddingCreateRequest, WeddingPath, WeddingRecord
from wedding_api.weddings.service import WeddingService


def _to_response(wedding: WeddingRecord) -> WeddingResponse:
    return WeddingResponse(**wedding.model_dump())


def _wedding_id(raw: str) -> str:
    return validate_payload(WeddingPath, {"wedding_id": raw}, source="path").wedding_id


def create_weddings_router(service: WeddingService, gate: AuthGate) -> APIRouter:
    """Build the owner-facing /weddings router."""
    router = APIRouter(
        prefix="/weddings",
        tags=["weddings"],
        responses={
            400: {"model": ApiErrorResponse},
            401: {"model": ApiErrorResponse},
            403: {"model": ApiErrorResponse},
            404: {"model": ApiErrorResponse},
        },
    )

    @router.post(
        "",
        status_code=201,
        response_model=WeddingResponse,
        responses={409: {"model": ApiErrorResponse}},
    )
    def create_wedding(
        req: WeddingCreateRequest, caller: CallerIdentity = Depends(gate.require)
    ) -> WeddingResponse:
        """Create a draft wedding page."""
        return _to_response(service.create(caller, req))

    @router.get("", response_model=WeddingsListResponse)
    def list_weddings(
        limit: int = Query(default=100, ge=1, le=500),
        caller: CallerIdentity = Depends(gate.require),
    ) -> WeddingsListResponse:
        """List the caller's wedding pages."""
        return WeddingsListResponse(
            items=[_to_response(item) for item in service.list_for(caller, limit=limit)]
        )

    @router.get("/{wedding_id}", response_model=WeddingResponse)
    def get_wedding(
        wedding_id: str, caller: CallerIdentity = Depends(gate.require)
    ) -> WeddingResponse:
        """Return one wedding page."""
        return _to_response(service.get(caller, _wedding_id(wedding_id)))

    @router.post("/{wedding_id}/publish", response_model=WeddingResponse)
    def publish_wedding(
        wedding_id: str, caller: CallerIdentity = Depends(gate.require)
    ) -> WeddingResponse:
        """Publish a wedding page under its slug."""
        return _to_response(service.publish(caller, _wedding_id(wedding_id)))

    return router


def create_public_router(service: WeddingService, gate: AuthGate) -> APIRouter:
    """Build the anonymous /public router."""
    router = APIRouter(prefix="/public", tags=["public"])

    @router.get(
        "/weddings/{slug}",
        response_model=WeddingResponse,
        responses={400: {"model": ApiErrorResponse}, 404: {"model": ApiErrorResponse}},
    )
    def public_wedding(
        slug: str, caller: CallerIdentity | None = Depends(gate.optional)
    ) -> WeddingResponse:
        """Return a published wedding page by slug."""
        if not is_valid_slug(slug):
            raise ApiError(error_code=ApiErrorCode.INVALID_SLUG, message="Invalid slug format")
        return _to_response(service.public_page(slug, caller))

    return router
