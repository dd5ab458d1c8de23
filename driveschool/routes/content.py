# driveschool/routes/content.py
"""
Site content endpoints.

Every handler runs through the request orchestrator. Reads are public and
low priority; saves and restores need an editor and are admitted first when
the service is saturated.
"""

from __future__ import annotations

from typing import Annotated, Optional

from fastapi import APIRouter, Depends, Path, Query, Request, Response

from ..auth import Caller, get_optional_caller
from ..core.config import settings
from ..core.constants import CONTENT_SLUG_PATTERN, MAX_HISTORY_LIMIT
from ..core.exceptions import ConflictException, ForbiddenException
from ..dependencies import get_content_store, get_orchestrator, inbound_request
from ..orchestrator import InboundRequest, Priority, RequestOrchestrator, RouteConfig
from ..schemas.content import (
    ContentHistoryResponse,
    ContentPageResponse,
    ContentRestoreRequest,
    ContentSaveRequest,
    ContentSaveResponse,
    SaveResult,
)
from ..services.content_store import VersionedContentStore

router = APIRouter(tags=["content"])

READ_ROUTE = RouteConfig(route_id="content.read", priority=Priority.LOW, require_auth=False)
HISTORY_ROUTE = RouteConfig(route_id="content.history", priority=Priority.MEDIUM)
SAVE_ROUTE = RouteConfig(route_id="content.save", priority=Priority.HIGH)
RESTORE_ROUTE = RouteConfig(route_id="content.restore", priority=Priority.HIGH)

PageSlug = Annotated[str, Path(pattern=CONTENT_SLUG_PATTERN, description="Page slug, e.g. 'home'")]
ContentKey = Annotated[str, Path(pattern=CONTENT_SLUG_PATTERN, description="Content key within the page")]


def require_editor(req: InboundRequest) -> str:
    """Return the caller id, or raise if the caller may not edit content."""
    if not req.caller_id:
        raise ForbiddenException()
    if not req.is_editor:
        raise ForbiddenException("Editor access required")
    return req.caller_id


def _save_response(result: SaveResult) -> ContentSaveResponse:
    if result.conflict or not result.success or result.version is None:
        raise ConflictException(details={"current_version": result.version})
    return ContentSaveResponse(success=True, version=result.version)


@router.get("/{page}", response_model=ContentPageResponse)
async def get_page_content(
    request: Request,
    response: Response,
    page: PageSlug,
    caller: Optional[Caller] = Depends(get_optional_caller),
    orchestrator: RequestOrchestrator = Depends(get_orchestrator),
    store: VersionedContentStore = Depends(get_content_store),
) -> ContentPageResponse:
    """All content items of one page."""

    async def handler(req: InboundRequest) -> ContentPageResponse:
        items = await store.load(page)
        ordered = [items[key] for key in sorted(items)]
        return ContentPageResponse(page=page, items=ordered, count=len(ordered))

    return await orchestrator.execute(
        inbound_request(request, caller, {"page": page}), handler, READ_ROUTE, response
    )


@router.get("/{page}/{key}/history", response_model=ContentHistoryResponse)
async def get_content_history(
    request: Request,
    response: Response,
    page: PageSlug,
    key: ContentKey,
    limit: int = Query(settings.content_history_limit, ge=1, le=MAX_HISTORY_LIMIT),
    caller: Optional[Caller] = Depends(get_optional_caller),
    orchestrator: RequestOrchestrator = Depends(get_orchestrator),
    store: VersionedContentStore = Depends(get_content_store),
) -> ContentHistoryResponse:
    """Most recent versions of one item, newest first."""

    async def handler(req: InboundRequest) -> ContentHistoryResponse:
        require_editor(req)
        versions = await store.history(page, key, limit)
        return ContentHistoryResponse(page=page, key=key, items=versions)

    return await orchestrator.execute(
        inbound_request(request, caller, {"page": page, "key": key, "limit": limit}),
        handler,
        HISTORY_ROUTE,
        response,
    )


@router.put("/{page}/{key}", response_model=ContentSaveResponse)
async def save_content(
    body: ContentSaveRequest,
    request: Request,
    response: Response,
    page: PageSlug,
    key: ContentKey,
    caller: Optional[Caller] = Depends(get_optional_caller),
    orchestrator: RequestOrchestrator = Depends(get_orchestrator),
    store: VersionedContentStore = Depends(get_content_store),
) -> ContentSaveResponse:
    """
    Save a new version of one content item.

    Send ``expected_version`` with the version you loaded; a 409 means
    someone else saved first and the editor should reload.
    """

    async def handler(req: InboundRequest) -> ContentSaveResponse:
        editor_id = require_editor(req)
        result = await store.save(
            page,
            key,
            body.value,
            body.type,
            editor_id,
            expected_version=body.expected_version,
        )
        return _save_response(result)

    payload = {"page": page, "key": key, **body.model_dump()}
    return await orchestrator.execute(
        inbound_request(request, caller, payload), handler, SAVE_ROUTE, response
    )


@router.post("/{page}/{key}/restore", response_model=ContentSaveResponse)
async def restore_content(
    body: ContentRestoreRequest,
    request: Request,
    response: Response,
    page: PageSlug,
    key: ContentKey,
    caller: Optional[Caller] = Depends(get_optional_caller),
    orchestrator: RequestOrchestrator = Depends(get_orchestrator),
    store: VersionedContentStore = Depends(get_content_store),
) -> ContentSaveResponse:
    """Re-publish a historical version as a new version."""

    async def handler(req: InboundRequest) -> ContentSaveResponse:
        editor_id = require_editor(req)
        result = await store.restore(
            page, key, body.version, editor_id, expected_version=body.expected_version
        )
        return _save_response(result)

    payload = {"page": page, "key": key, **body.model_dump()}
    return await orchestrator.execute(
        inbound_request(request, caller, payload), handler, RESTORE_ROUTE, response
    )
