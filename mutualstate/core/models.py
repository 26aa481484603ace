"""
Shared entities derived from mutual ledger state: connections and stories.
"""

import random
import string
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from .clock import ensure_utc

CONNECTIONS = "connections"
QUEUED_STORIES = "queued_stories"
APPROVED_STORIES = "approved_stories"

CONNECTION_STATUSES = ("active", "broken")
STORY_STATUSES = ("pending", "approved", "rejected")

_TOKEN_ALPHABET = string.ascii_uppercase + string.digits


def sorted_pair(first: str, second: str) -> Tuple[str, str]:
    a, b = sorted([first, second])
    return a, b


def connection_id(actor_a: str, actor_b: str) -> str:
    """Order-independent connection id: both sides compute the same document."""
    a, b = sorted_pair(actor_a, actor_b)
    return f"{a}_{b}"


def story_id(conversation_id: str, message_id: str) -> str:
    return f"{conversation_id}_{message_id}"


def conversation_key(key_a: str, key_b: str) -> str:
    """Conversation key of two rotating identifiers, independent of who initiates."""
    a, b = sorted_pair(key_a, key_b)
    return f"{a}_{b}"


def generate_connection_token(length: int = 8) -> str:
    """Persistent 8-character alphanumeric token that outlives daily ids."""
    return ''.join(random.choice(_TOKEN_ALPHABET) for _ in range(length))


def _iso(value: Optional[datetime]) -> Optional[str]:
    return ensure_utc(value).isoformat() if value else None


def _parse(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


@dataclass
class Connection:
    id: str
    participant_ids: List[str]
    created_at: datetime
    last_mutual_at: datetime
    streak_count: int
    is_locked: bool  # hint written at transition time; readers use locks.is_entity_locked
    lock_expires_at: Optional[datetime]
    last_streak_date: str
    status: str = "active"
    connection_token: str = ""

    def to_dict(self) -> Dict:
        data = asdict(self)
        data['created_at'] = _iso(self.created_at)
        data['last_mutual_at'] = _iso(self.last_mutual_at)
        data['lock_expires_at'] = _iso(self.lock_expires_at)
        return data

    @classmethod
    def from_dict(cls, data: Dict) -> 'Connection':
        data = dict(data)
        data['created_at'] = _parse(data['created_at'])
        data['last_mutual_at'] = _parse(data['last_mutual_at'])
        data['lock_expires_at'] = _parse(data.get('lock_expires_at'))
        data['participant_ids'] = list(data['participant_ids'])
        return cls(**data)

    @property
    def locked_flag(self) -> bool:
        return self.is_locked


@dataclass(frozen=True)
class ContentSnapshot:
    """Copy of highlighted content, decoupled from the live message."""
    text: str
    sent_at: Optional[datetime] = None

    def to_dict(self) -> Dict:
        return {"text": self.text, "sent_at": _iso(self.sent_at)}

    @classmethod
    def from_dict(cls, data: Dict) -> 'ContentSnapshot':
        return cls(text=data["text"], sent_at=_parse(data.get("sent_at")))


@dataclass
class QueuedStory:
    id: str
    content_snapshot: ContentSnapshot
    queued_at: datetime
    status: str
    locked: bool
    lock_expires_at: Optional[datetime]
    conversation_id: str
    message_id: str
    # Admin context only, never copied to the public story
    participant_ids: List[str] = field(default_factory=list)
    reviewed_at: Optional[datetime] = None
    reviewed_by: Optional[str] = None
    rejection_reason: Optional[str] = None

    def to_dict(self) -> Dict:
        return {
            "id": self.id,
            "content_snapshot": self.content_snapshot.to_dict(),
            "queued_at": _iso(self.queued_at),
            "status": self.status,
            "locked": self.locked,
            "lock_expires_at": _iso(self.lock_expires_at),
            "conversation_id": self.conversation_id,
            "message_id": self.message_id,
            "participant_ids": list(self.participant_ids),
            "reviewed_at": _iso(self.reviewed_at),
            "reviewed_by": self.reviewed_by,
            "rejection_reason": self.rejection_reason,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> 'QueuedStory':
        return cls(
            id=data["id"],
            content_snapshot=ContentSnapshot.from_dict(data["content_snapshot"]),
            queued_at=_parse(data["queued_at"]),
            status=data["status"],
            locked=bool(data["locked"]),
            lock_expires_at=_parse(data.get("lock_expires_at")),
            conversation_id=data["conversation_id"],
            message_id=data["message_id"],
            participant_ids=list(data.get("participant_ids") or []),
            reviewed_at=_parse(data.get("reviewed_at")),
            reviewed_by=data.get("reviewed_by"),
            rejection_reason=data.get("rejection_reason"),
        )

    @property
    def locked_flag(self) -> bool:
        return self.locked


@dataclass
class ApprovedStory:
    """Public, anonymized copy of an approved story."""
    id: str
    content_snapshot: ContentSnapshot
    approved_at: datetime
    approved_by: str
    expires_at: datetime
    view_count: int = 0

    def to_dict(self) -> Dict:
        return {
            "id": self.id,
            "content_snapshot": self.content_snapshot.to_dict(),
            "approved_at": _iso(self.approved_at),
            "approved_by": self.approved_by,
            "expires_at": _iso(self.expires_at),
            "view_count": self.view_count,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> 'ApprovedStory':
        return cls(
            id=data["id"],
            content_snapshot=ContentSnapshot.from_dict(data["content_snapshot"]),
            approved_at=_parse(data["approved_at"]),
            approved_by=data["approved_by"],
            expires_at=_parse(data["expires_at"]),
            view_count=int(data.get("view_count", 0)),
        )
