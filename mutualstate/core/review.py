"""
Review workflow - admin oversight before a mutually highlighted story goes public.

pending -> approved (spawns an ApprovedStory visible for a rolling window)
pending -> rejected
Approval is refused while the story's day-boundary lock is active; rejection is always allowed.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Dict, List, Optional

from .clock import DayClock, ensure_utc, format_countdown
from .config import DEFAULT_REJECTION_REASON, PUBLIC_STORIES_DEFAULT_LIMIT, STORY_VISIBILITY_HOURS
from .documents import DocumentRef, DocumentStore
from .errors import (
    ErrorKind,
    InvalidArgumentError,
    LockedError,
    MutualStateError,
    NotFoundError,
)
from .locks import is_entity_locked
from .models import APPROVED_STORIES, QUEUED_STORIES, ApprovedStory, QueuedStory
from ..util.logging import logger, audit_event


class Decision(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"


@dataclass
class ReviewResult:
    success: bool
    message: str
    story_id: str
    status: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    lock_expires_at: Optional[datetime] = None
    approved_story: Optional[ApprovedStory] = None

    def to_dict(self) -> Dict:
        return {
            "success": self.success,
            "message": self.message,
            "story_id": self.story_id,
            "status": self.status,
            "error_kind": self.error_kind.value if self.error_kind else None,
            "lock_expires_at": self.lock_expires_at.isoformat() if self.lock_expires_at else None,
            "expires_at": self.approved_story.expires_at.isoformat() if self.approved_story else None,
        }


class ReviewWorkflow:
    """Manages admin decisions on queued stories and the public story feed."""

    def __init__(self, store: DocumentStore, clock: DayClock,
                 visibility: timedelta = timedelta(hours=STORY_VISIBILITY_HOURS)):
        self.store = store
        self.clock = clock
        self.visibility = visibility

    def get_story(self, story_id: str) -> Optional[QueuedStory]:
        document = self.store.get(DocumentRef(QUEUED_STORIES, story_id))
        return QueuedStory.from_dict(document.data) if document else None

    def review(self, story_id: str, decision, admin_id: str, reason: str = None) -> ReviewResult:
        """Approve or reject a pending story."""
        try:
            try:
                decision = Decision(decision)
            except ValueError:
                raise InvalidArgumentError(f"Invalid decision: {decision!r}")
            if not story_id or not admin_id or not admin_id.strip():
                raise InvalidArgumentError("story_id and admin_id are required")

            if decision == Decision.APPROVE:
                result = self.store.run_transaction(lambda txn: self._approve(txn, story_id, admin_id))
            else:
                result = self.store.run_transaction(lambda txn: self._reject(txn, story_id, admin_id, reason))
        except MutualStateError as e:
            if isinstance(e, LockedError):
                logger.log_lock_block("review.approve", story_id, e.lock_expires_at)
            return ReviewResult(success=False, message=e.message, story_id=story_id, error_kind=e.kind,
                                lock_expires_at=getattr(e, "lock_expires_at", None))

        logger.log_review_decision(story_id, result.status, admin_id, reason or "")
        audit_event("review.decision", {"story_id": story_id, "admin_id": admin_id}, {"status": result.status})
        return result

    def _load_pending(self, txn, story_id: str) -> QueuedStory:
        document = txn.get(DocumentRef(QUEUED_STORIES, story_id))
        if document is None:
            raise NotFoundError("Story not found")
        story = QueuedStory.from_dict(document.data)
        if story.status != "pending":
            raise InvalidArgumentError(f"Story already {story.status}")
        return story

    def _approve(self, txn, story_id: str, admin_id: str) -> ReviewResult:
        approved_ref = DocumentRef(APPROVED_STORIES, story_id)
        story = self._load_pending(txn, story_id)
        txn.get(approved_ref)

        now = self.clock.now()
        if is_entity_locked(story, now):
            remaining = format_countdown(ensure_utc(story.lock_expires_at) - now)
            raise LockedError(story.lock_expires_at,
                              f"Story is still locked. Wait until midnight (~{remaining} remaining).")

        approved = ApprovedStory(
            id=story.id,
            content_snapshot=story.content_snapshot,
            approved_at=now,
            approved_by=admin_id,
            expires_at=now + self.visibility,
        )
        story.status = "approved"
        story.reviewed_at = now
        story.reviewed_by = admin_id

        txn.set(approved_ref, approved.to_dict())
        txn.set(DocumentRef(QUEUED_STORIES, story_id), story.to_dict())
        return ReviewResult(success=True, message="Story approved successfully", story_id=story_id,
                            status="approved", approved_story=approved)

    def _reject(self, txn, story_id: str, admin_id: str, reason: Optional[str]) -> ReviewResult:
        story = self._load_pending(txn, story_id)

        story.status = "rejected"
        story.reviewed_at = self.clock.now()
        story.reviewed_by = admin_id
        story.rejection_reason = reason or DEFAULT_REJECTION_REASON

        txn.set(DocumentRef(QUEUED_STORIES, story_id), story.to_dict())
        return ReviewResult(success=True, message="Story rejected", story_id=story_id, status="rejected")

    def list_pending(self) -> List[QueuedStory]:
        """Pending stories, most recently queued first."""
        stories = [QueuedStory.from_dict(d.data) for d in self.store.query_collection(QUEUED_STORIES)]
        pending = [s for s in stories if s.status == "pending"]
        return sorted(pending, key=lambda s: s.queued_at, reverse=True)

    def list_public(self, limit: int = PUBLIC_STORIES_DEFAULT_LIMIT) -> List[ApprovedStory]:
        """Unexpired approved stories, most recently approved first."""
        if limit < 1:
            return []
        now = self.clock.now()
        stories = [ApprovedStory.from_dict(d.data) for d in self.store.query_collection(APPROVED_STORIES)]
        visible = [s for s in stories if ensure_utc(s.expires_at) > now]
        visible.sort(key=lambda s: s.approved_at, reverse=True)
        return visible[:limit]

    def sweep_expired(self) -> int:
        """Delete approved stories whose visibility window has ended. Returns the count removed."""
        now = self.clock.now()
        expired_ids = [
            d.ref.doc_id for d in self.store.query_collection(APPROVED_STORIES)
            if ensure_utc(ApprovedStory.from_dict(d.data).expires_at) <= now
        ]

        def delete_expired(txn):
            refs = [DocumentRef(APPROVED_STORIES, story_id) for story_id in expired_ids]
            still_expired = []
            for ref in refs:
                document = txn.get(ref)
                if document and ensure_utc(ApprovedStory.from_dict(document.data).expires_at) <= now:
                    still_expired.append(ref)
            for ref in still_expired:
                txn.delete(ref)
            return len(still_expired)

        deleted = self.store.run_transaction(delete_expired) if expired_ids else 0
        logger.log_operation("stories.sweep", "success", {"deleted": deleted})
        return deleted
