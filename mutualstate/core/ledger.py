"""
Per-actor ledgers: one record per (actor, target) edge, for favorites and highlights.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from .clock import ensure_utc
from .documents import DocumentRef, DocumentStore


class LedgerKind(str, Enum):
    FAVORITE = "favorite"
    HIGHLIGHT = "highlight"


LEDGER_COLLECTIONS = {
    LedgerKind.FAVORITE: "favorites",
    LedgerKind.HIGHLIGHT: "highlights",
}


@dataclass
class LedgerEntry:
    actor_id: str
    target_key: str
    created_at: datetime
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict:
        return {
            "actor_id": self.actor_id,
            "target_key": self.target_key,
            "created_at": ensure_utc(self.created_at).isoformat(),
            "details": dict(self.details),
        }

    @classmethod
    def from_dict(cls, data: Dict) -> 'LedgerEntry':
        return cls(
            actor_id=data["actor_id"],
            target_key=data["target_key"],
            created_at=datetime.fromisoformat(data["created_at"]),
            details=dict(data.get("details") or {}),
        )


class LedgerStore:
    """Keyed collection of ledger entries for one ledger kind."""

    def __init__(self, store: DocumentStore, kind: LedgerKind):
        self.store = store
        self.kind = LedgerKind(kind)
        self.collection = LEDGER_COLLECTIONS[self.kind]

    def ref(self, actor_id: str, target_key: str) -> DocumentRef:
        return DocumentRef(self.collection, f"{actor_id}/{target_key}")

    def get(self, actor_id: str, target_key: str) -> Optional[LedgerEntry]:
        document = self.store.get(self.ref(actor_id, target_key))
        return LedgerEntry.from_dict(document.data) if document else None

    def put(self, actor_id: str, target_key: str, entry: LedgerEntry):
        ref = self.ref(actor_id, target_key)

        def write(txn):
            txn.get(ref)
            txn.set(ref, entry.to_dict(), owner=actor_id)

        self.store.run_transaction(write)

    def delete(self, actor_id: str, target_key: str):
        ref = self.ref(actor_id, target_key)

        def remove(txn):
            txn.get(ref)
            txn.delete(ref)

        self.store.run_transaction(remove)

    def list_by_actor(self, actor_id: str) -> List[LedgerEntry]:
        return [LedgerEntry.from_dict(d.data) for d in self.store.query_owner(self.collection, actor_id)]

    def list_by_conversation(self, actor_id: str, conversation_id: str) -> List[LedgerEntry]:
        """The actor's entries that point into one conversation (highlights carry conversation_id)."""
        return [e for e in self.list_by_actor(actor_id) if e.details.get("conversation_id") == conversation_id]
