"""
HTTP surface for the mutual-state engine.

Usage:
    uvicorn mutualstate.api.main:app --reload
"""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .schemas import (
    ApplyRequest,
    ApprovedStoryListResponse,
    ApprovedStoryResponse,
    ClockResponse,
    DailyIdResponse,
    HealthResponse,
    HighlightContent,
    HighlightEntryResponse,
    HighlightListResponse,
    MutualResultResponse,
    QueuedStoryListResponse,
    QueuedStoryResponse,
    ReviewRequest,
    ReviewResponse,
    StatusSnapshotResponse,
    SweepResponse,
    ToggleRequest,
)
from ..core import config
from ..core.clock import format_countdown
from ..core.db import health_check
from ..core.engine import HighlightTarget, MutualResult
from ..core.errors import ErrorKind, MutualStateError
from ..core.identity import format_daily_id
from ..core.ledger import LedgerKind
from ..core.locks import is_entity_locked
from ..core.models import CONNECTIONS
from ..core.services import Services, get_services, reset_services

# HTTP status per failure kind; successful results are 200
ERROR_STATUS_CODES = {
    ErrorKind.INVALID_ARGUMENT: 400,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.ALREADY_EXISTS: 409,
    ErrorKind.LOCKED: 423,
    ErrorKind.CONFLICT: 409,
    ErrorKind.UNAVAILABLE: 503,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    reset_services()


app = FastAPI(
    title="Mutual State API",
    version=config.VERSION,
    description="Favorites, connections, streaks and mutually highlighted stories",
    docs_url="/docs" if config.debug_enabled() else None,
    redoc_url="/redoc" if config.debug_enabled() else None,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", "http://127.0.0.1:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def require_admin(x_admin_token: Optional[str] = Header(default=None)):
    """Admin endpoints require X-Admin-Token when ADMIN_TOKEN is configured."""
    if config.ADMIN_TOKEN and x_admin_token != config.ADMIN_TOKEN:
        raise HTTPException(status_code=401, detail="Admin token required")


def _to_target(content: Optional[HighlightContent]) -> Optional[HighlightTarget]:
    if content is None:
        return None
    return HighlightTarget(
        conversation_id=content.conversation_id,
        message_id=content.message_id,
        text=content.text,
        sent_at=content.sent_at,
    )


def _result_response(result: MutualResult) -> JSONResponse:
    status_code = 200 if result.success else ERROR_STATUS_CODES[result.error_kind]
    body = MutualResultResponse(**result.to_dict())
    return JSONResponse(status_code=status_code, content=body.model_dump(mode="json"))


@app.get("/health", response_model=HealthResponse)
def health_check_endpoint(services: Services = Depends(get_services)):
    """Check system health."""
    db_health = health_check(services.store.db_path)

    return HealthResponse(
        status="healthy" if db_health else "unhealthy",
        version=config.VERSION,
        db_health=db_health,
        connection_count=services.store.count(CONNECTIONS) if db_health else 0,
        pending_story_count=len(services.review.list_pending()) if db_health else 0,
    )


@app.get("/clock", response_model=ClockResponse)
def clock_endpoint(services: Services = Depends(get_services)):
    """Current Day Key and time remaining until the daily reset."""
    clock = services.clock
    remaining = clock.time_until_boundary()
    return ClockResponse(
        now=clock.now(),
        today=clock.today(),
        next_reset_at=clock.boundary_of_next_day(),
        seconds_until_reset=int(remaining.total_seconds()),
        countdown=format_countdown(remaining),
    )


@app.post("/identity/{actor_id}/daily-id", response_model=DailyIdResponse)
def issue_daily_id(actor_id: str, services: Services = Depends(get_services)):
    """Get or create today's rotating identifier for an actor."""
    if not hasattr(services.identity, "issue"):
        raise HTTPException(status_code=501, detail="Identity provider does not issue ids")
    try:
        daily_id = services.identity.issue(actor_id)
    except MutualStateError as e:
        raise HTTPException(status_code=ERROR_STATUS_CODES[e.kind], detail=e.message)

    return DailyIdResponse(
        actor_id=actor_id,
        daily_id=daily_id,
        display=format_daily_id(daily_id),
        expires_at=services.clock.boundary_of_next_day(),
    )


@app.post("/identity/{actor_id}/daily-id/refresh", response_model=DailyIdResponse)
def refresh_daily_id(actor_id: str, services: Services = Depends(get_services)):
    """Force a new rotating identifier for an actor; the previous one stops resolving."""
    if not hasattr(services.identity, "refresh"):
        raise HTTPException(status_code=501, detail="Identity provider does not issue ids")
    try:
        daily_id = services.identity.refresh(actor_id)
    except MutualStateError as e:
        raise HTTPException(status_code=ERROR_STATUS_CODES[e.kind], detail=e.message)

    return DailyIdResponse(
        actor_id=actor_id,
        daily_id=daily_id,
        display=format_daily_id(daily_id),
        expires_at=services.clock.boundary_of_next_day(),
    )


@app.post("/mutual/apply", response_model=MutualResultResponse)
def apply_endpoint(request: ApplyRequest, services: Services = Depends(get_services)):
    """Add or remove a favorite/highlight and derive mutual state."""
    result = services.engine.apply(
        request.actor_id,
        request.target_key,
        request.intent,
        request.kind,
        content=_to_target(request.content),
    )
    return _result_response(result)


@app.post("/mutual/toggle", response_model=MutualResultResponse)
def toggle_endpoint(request: ToggleRequest, services: Services = Depends(get_services)):
    """Flip the actor's favorite/highlight."""
    result = services.engine.toggle(
        request.actor_id,
        request.target_key,
        request.kind,
        content=_to_target(request.content),
    )
    return _result_response(result)


@app.get("/mutual/status", response_model=StatusSnapshotResponse)
def status_endpoint(
    actor_id: str,
    target_key: str,
    kind: str = "favorite",
    conversation_id: Optional[str] = None,
    message_id: Optional[str] = None,
    services: Services = Depends(get_services),
):
    """Current denormalized status for one actor/target pair."""
    content = None
    if conversation_id and message_id:
        content = HighlightTarget(conversation_id=conversation_id, message_id=message_id)

    try:
        snapshot = services.status.snapshot(actor_id, target_key, kind, content)
    except MutualStateError as e:
        raise HTTPException(status_code=ERROR_STATUS_CODES[e.kind], detail=e.message)

    return StatusSnapshotResponse(**snapshot.to_dict())


@app.get("/conversations/{conversation_id}/highlights", response_model=HighlightListResponse)
def conversation_highlights(conversation_id: str, actor_id: str, services: Services = Depends(get_services)):
    """Messages the actor has highlighted in one conversation."""
    try:
        entries = services.engine.ledgers[LedgerKind.HIGHLIGHT].list_by_conversation(actor_id, conversation_id)
    except MutualStateError as e:
        raise HTTPException(status_code=ERROR_STATUS_CODES[e.kind], detail=e.message)

    return HighlightListResponse(
        conversation_id=conversation_id,
        highlights=[
            HighlightEntryResponse(
                message_id=e.details["message_id"],
                text=e.details.get("text"),
                sent_at=e.details.get("sent_at"),
                counterpart_key=e.details.get("counterpart_key"),
                created_at=e.created_at,
            )
            for e in entries
        ],
    )


@app.get("/stories", response_model=ApprovedStoryListResponse)
def public_stories_endpoint(
    limit: int = Query(default=config.PUBLIC_STORIES_DEFAULT_LIMIT, ge=1, le=500),
    services: Services = Depends(get_services),
):
    """Public feed of approved, unexpired stories."""
    stories = services.review.list_public(limit)
    return ApprovedStoryListResponse(
        stories=[
            ApprovedStoryResponse(
                id=s.id,
                text=s.content_snapshot.text,
                sent_at=s.content_snapshot.sent_at,
                approved_at=s.approved_at,
                expires_at=s.expires_at,
                view_count=s.view_count,
            )
            for s in stories
        ]
    )


@app.get("/stories/pending", response_model=QueuedStoryListResponse, dependencies=[Depends(require_admin)])
def pending_stories_endpoint(services: Services = Depends(get_services)):
    """Stories waiting for admin review."""
    now = services.clock.now()
    return QueuedStoryListResponse(
        stories=[
            QueuedStoryResponse(
                id=s.id,
                text=s.content_snapshot.text,
                sent_at=s.content_snapshot.sent_at,
                queued_at=s.queued_at,
                status=s.status,
                is_locked=is_entity_locked(s, now),
                lock_expires_at=s.lock_expires_at,
                conversation_id=s.conversation_id,
                message_id=s.message_id,
            )
            for s in services.review.list_pending()
        ]
    )


@app.post("/stories/{story_id}/review", response_model=ReviewResponse, dependencies=[Depends(require_admin)])
def review_endpoint(story_id: str, request: ReviewRequest, services: Services = Depends(get_services)):
    """Approve or reject a queued story."""
    result = services.review.review(story_id, request.decision, request.admin_id, request.reason)
    status_code = 200 if result.success else ERROR_STATUS_CODES[result.error_kind]
    body = ReviewResponse(**result.to_dict())
    return JSONResponse(status_code=status_code, content=body.model_dump(mode="json"))


@app.post("/stories/sweep", response_model=SweepResponse, dependencies=[Depends(require_admin)])
def sweep_endpoint(services: Services = Depends(get_services)):
    """Delete approved stories past their visibility window."""
    try:
        deleted = services.review.sweep_expired()
    except MutualStateError as e:
        raise HTTPException(status_code=ERROR_STATUS_CODES[e.kind], detail=e.message)
    return SweepResponse(deleted=deleted)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="127.0.0.1", port=8000)
