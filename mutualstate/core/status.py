"""
Live status projection.

Folds three documents (my ledger entry, the counterpart's entry, the shared
entity) into one StatusSnapshot and re-derives it whenever any of them changes.
"""

import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, Optional

from .clock import DayClock
from .documents import Document, DocumentRef, DocumentStore
from .engine import HighlightTarget, MutualRefs, MutualStateEngine
from .ledger import LedgerKind
from .locks import is_entity_locked
from .models import Connection, QueuedStory
from ..util.logging import logger


@dataclass(frozen=True)
class StatusSnapshot:
    favorited_by_me: bool
    favorited_by_other: bool
    is_mutual: bool
    is_locked: bool
    lock_expires_at: Optional[datetime]
    streak_count: int

    def to_dict(self) -> Dict:
        return {
            "favorited_by_me": self.favorited_by_me,
            "favorited_by_other": self.favorited_by_other,
            "is_mutual": self.is_mutual,
            "is_locked": self.is_locked,
            "lock_expires_at": self.lock_expires_at.isoformat() if self.lock_expires_at else None,
            "streak_count": self.streak_count,
        }


class Subscription:
    """Handle returned by StatusProjector.subscribe; call close() to stop updates."""

    def __init__(self, projector: 'StatusProjector', refs: MutualRefs,
                 callback: Callable[[StatusSnapshot], None]):
        self._projector = projector
        self._refs = refs
        self._callback = callback
        self._documents: Dict[DocumentRef, Optional[Document]] = {}
        self._versions: Dict[DocumentRef, int] = {}
        self._lock = threading.Lock()
        self._unsubscribers = []
        self.closed = False
        self._started = False
        self.latest: Optional[StatusSnapshot] = None

    def _start(self):
        store = self._projector.store
        refs = (self._refs.mine, self._refs.theirs, self._refs.entity)
        for ref in refs:
            self._unsubscribers.append(store.watch(ref, self._on_change))
        # Watch first, then read, so no commit slips between the two
        for ref in refs:
            version, document = store.read(ref)
            self._accept(ref, document, version)
        with self._lock:
            self._started = True
        self._emit()

    def _accept(self, ref: DocumentRef, document: Optional[Document], version: int) -> bool:
        """Keep the newest version seen per document; older deliveries are dropped."""
        with self._lock:
            if ref in self._versions and version <= self._versions[ref]:
                return False
            self._versions[ref] = version
            self._documents[ref] = document
            return True

    def _on_change(self, ref: DocumentRef, document: Optional[Document], version: int):
        if self._accept(ref, document, version):
            self._emit()

    def _emit(self):
        if self.closed or not self._started:
            return
        with self._lock:
            snapshot = self._projector.fold(
                self._refs.kind,
                self._documents.get(self._refs.mine),
                self._documents.get(self._refs.theirs),
                self._documents.get(self._refs.entity),
            )
            self.latest = snapshot
        try:
            self._callback(snapshot)
        except Exception as e:
            logger.error(f"Status subscriber failed: {e}")

    def refresh(self) -> Optional[StatusSnapshot]:
        """Re-derive without a document change; lock expiry is time-based."""
        self._emit()
        return self.latest

    def close(self):
        self.closed = True
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []


class StatusProjector:
    """Denormalized, read-only view of mutual state for one actor/target pair."""

    def __init__(self, engine: MutualStateEngine, clock: DayClock = None):
        self.engine = engine
        self.store: DocumentStore = engine.store
        self.clock = clock or engine.clock

    def fold(self, kind: LedgerKind, mine: Optional[Document], theirs: Optional[Document],
             entity_doc: Optional[Document]) -> StatusSnapshot:
        entity = None
        if entity_doc is not None:
            if kind == LedgerKind.FAVORITE:
                entity = Connection.from_dict(entity_doc.data)
            else:
                entity = QueuedStory.from_dict(entity_doc.data)

        return StatusSnapshot(
            favorited_by_me=mine is not None,
            favorited_by_other=theirs is not None,
            is_mutual=mine is not None and theirs is not None,
            # Recomputed against the clock on every fold; the stored flag is only a hint
            is_locked=is_entity_locked(entity, self.clock.now()),
            lock_expires_at=entity.lock_expires_at if entity else None,
            streak_count=entity.streak_count if isinstance(entity, Connection) else 0,
        )

    def snapshot(self, actor_id: str, target_key: str, kind,
                 content: Optional[HighlightTarget] = None) -> StatusSnapshot:
        """One-shot status read. Raises MutualStateError if the pair cannot be resolved."""
        refs = self.engine.refs_for(actor_id, target_key, kind, content)
        return self.fold(refs.kind, self.store.get(refs.mine), self.store.get(refs.theirs),
                         self.store.get(refs.entity))

    def subscribe(self, actor_id: str, target_key: str, kind,
                  callback: Callable[[StatusSnapshot], None],
                  content: Optional[HighlightTarget] = None) -> Subscription:
        """Emit a snapshot now and after every change to the underlying documents."""
        refs = self.engine.refs_for(actor_id, target_key, kind, content)
        subscription = Subscription(self, refs, callback)
        subscription._start()
        return subscription
