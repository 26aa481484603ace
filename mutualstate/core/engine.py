"""
Mutual-state engine: turns two one-sided ledger entries into one shared entity.

apply() resolves the counterpart outside the transaction, then runs a single
read-validate-write transaction:

    1. read the actor's ledger entry, the counterpart's entry and the shared entity
    2. validate in memory (missing entry, duplicate add, active lock)
    3. write the actor's entry and, on reciprocity, create or renew the entity

Every failure comes back as a typed MutualResult; nothing is raised past apply().
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from .clock import DayClock, ensure_utc, format_countdown
from .documents import Document, DocumentRef, DocumentStore, Transaction
from .errors import (
    AlreadyExistsError,
    ErrorKind,
    InvalidArgumentError,
    LockedError,
    MutualStateError,
    NotFoundError,
)
from .identity import IdentityResolver, format_daily_id
from .ledger import LedgerEntry, LedgerKind, LedgerStore
from .locks import is_entity_locked, new_lock_expiry
from .models import (
    CONNECTIONS,
    QUEUED_STORIES,
    Connection,
    ContentSnapshot,
    QueuedStory,
    connection_id,
    conversation_key,
    generate_connection_token,
    sorted_pair,
    story_id,
)
from .notifications import NotificationDispatcher
from .streak import StreakOutcome, next_streak
from ..util.logging import logger


class Intent(str, Enum):
    ADD = "add"
    REMOVE = "remove"


@dataclass(frozen=True)
class HighlightTarget:
    """The message a highlight refers to."""
    conversation_id: str
    message_id: str
    text: Optional[str] = None
    sent_at: Optional[datetime] = None


@dataclass
class MutualResult:
    success: bool
    mutual: bool = False
    locked: bool = False
    lock_expires_at: Optional[datetime] = None
    streak_count: Optional[int] = None
    error_kind: Optional[ErrorKind] = None
    message: str = ""
    entity_id: Optional[str] = None
    entity_created: bool = False
    streak_outcome: Optional[StreakOutcome] = None

    @classmethod
    def failure(cls, error: MutualStateError, entity_id: str = None) -> 'MutualResult':
        lock_expires_at = getattr(error, "lock_expires_at", None)
        return cls(
            success=False,
            locked=error.kind == ErrorKind.LOCKED,
            lock_expires_at=lock_expires_at,
            error_kind=error.kind,
            message=error.message,
            entity_id=entity_id,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "mutual": self.mutual,
            "locked": self.locked,
            "lock_expires_at": self.lock_expires_at.isoformat() if self.lock_expires_at else None,
            "streak_count": self.streak_count,
            "error_kind": self.error_kind.value if self.error_kind else None,
            "message": self.message,
            "entity_id": self.entity_id,
            "entity_created": self.entity_created,
            "streak_outcome": self.streak_outcome.value if self.streak_outcome else None,
        }


@dataclass(frozen=True)
class MutualRefs:
    """The three documents that make up mutual state for one actor/target pair."""
    kind: LedgerKind
    mine: DocumentRef
    theirs: DocumentRef
    entity: DocumentRef


@dataclass
class _Plan:
    """Everything apply() resolves before opening the transaction."""
    kind: LedgerKind
    actor_id: str
    actor_key: str
    counterpart_id: str
    target_key: str
    ledger_key: str
    counterpart_ledger_key: str
    entity_ref: DocumentRef
    conversation: str
    content: Optional[HighlightTarget] = None
    details: Dict[str, Any] = field(default_factory=dict)


_NOUNS = {
    LedgerKind.FAVORITE: ("Favorite", "favorited this user"),
    LedgerKind.HIGHLIGHT: ("Highlight", "highlighted this message"),
}


class MutualStateEngine:
    """Transactional core shared by Favorites -> Connections and Highlights -> Stories."""

    def __init__(self, store: DocumentStore, clock: DayClock, identity: IdentityResolver,
                 dispatcher: NotificationDispatcher = None, max_attempts: int = None):
        self.store = store
        self.clock = clock
        self.identity = identity
        self.dispatcher = dispatcher
        self.max_attempts = max_attempts
        self.ledgers = {
            LedgerKind.FAVORITE: LedgerStore(store, LedgerKind.FAVORITE),
            LedgerKind.HIGHLIGHT: LedgerStore(store, LedgerKind.HIGHLIGHT),
        }

    # Public operations

    def apply(self, actor_id: str, target_key: str, intent, kind,
              content: Optional[HighlightTarget] = None) -> MutualResult:
        """Add or remove the actor's ledger entry and derive mutual state."""
        plan = None
        try:
            intent = _coerce(Intent, intent, "intent")
            kind = _coerce(LedgerKind, kind, "kind")
            plan = self._resolve(actor_id, target_key, kind, intent, content)
            result = self.store.run_transaction(
                lambda txn: self._transact(txn, plan, intent),
                max_attempts=self.max_attempts
            )
        except MutualStateError as e:
            entity_id = plan.entity_ref.doc_id if plan else None
            if isinstance(e, LockedError):
                logger.log_lock_block(f"ledger.{kind.value}.{intent.value}", entity_id, e.lock_expires_at)
            elif e.kind not in (ErrorKind.ALREADY_EXISTS, ErrorKind.NOT_FOUND, ErrorKind.INVALID_ARGUMENT):
                logger.error(f"apply failed for actor '{actor_id}': {e.kind.value}: {e.message}")
            return MutualResult.failure(e, entity_id=entity_id)

        logger.log_ledger_operation(kind.value, intent.value, actor_id, target_key)
        if result.mutual and intent == Intent.ADD:
            logger.log_mutual_event(kind.value, result.entity_id, result.entity_created,
                                    result.streak_count, result.lock_expires_at)

        self._notify(plan, intent, result)
        return result

    def toggle(self, actor_id: str, target_key: str, kind,
               content: Optional[HighlightTarget] = None) -> MutualResult:
        """Remove the actor's entry if present, otherwise add it."""
        try:
            kind = _coerce(LedgerKind, kind, "kind")
            plan = self._resolve(actor_id, target_key, kind, Intent.REMOVE, content)
            existing = self.ledgers[kind].get(actor_id, plan.ledger_key)
        except MutualStateError as e:
            return MutualResult.failure(e)

        intent = Intent.REMOVE if existing else Intent.ADD
        return self.apply(actor_id, target_key, intent, kind, content)

    def refs_for(self, actor_id: str, target_key: str, kind,
                 content: Optional[HighlightTarget] = None) -> MutualRefs:
        """Resolve the documents behind a pair; raises MutualStateError when unresolvable."""
        kind = _coerce(LedgerKind, kind, "kind")
        plan = self._resolve(actor_id, target_key, kind, Intent.REMOVE, content)
        ledger = self.ledgers[kind]
        return MutualRefs(
            kind=kind,
            mine=ledger.ref(plan.actor_id, plan.ledger_key),
            theirs=ledger.ref(plan.counterpart_id, plan.counterpart_ledger_key),
            entity=plan.entity_ref,
        )

    # Pre-transaction resolution

    def _resolve(self, actor_id: str, target_key: str, kind: LedgerKind, intent: Intent,
                 content: Optional[HighlightTarget]) -> _Plan:
        if not actor_id or not actor_id.strip() or not target_key or not target_key.strip():
            raise InvalidArgumentError("Invalid input parameters")

        actor_key = self.identity.current_key(actor_id)
        if not actor_key:
            raise NotFoundError("Your daily ID has expired")

        if target_key == actor_key:
            raise InvalidArgumentError(f"Cannot {kind.value} yourself")

        counterpart_id = self.identity.resolve(target_key)
        if not counterpart_id:
            raise NotFoundError()

        if counterpart_id == actor_id:
            raise InvalidArgumentError(f"Cannot {kind.value} yourself")

        if kind == LedgerKind.FAVORITE:
            return _Plan(
                kind=kind,
                actor_id=actor_id,
                actor_key=actor_key,
                counterpart_id=counterpart_id,
                target_key=target_key,
                ledger_key=target_key,
                counterpart_ledger_key=actor_key,
                entity_ref=DocumentRef(CONNECTIONS, connection_id(actor_id, counterpart_id)),
                conversation=conversation_key(actor_key, target_key),
                details={"actor_key": actor_key},
            )

        if content is None or not content.conversation_id or not content.message_id:
            raise InvalidArgumentError("Missing required fields")
        if intent == Intent.ADD and not (content.text or "").strip():
            raise InvalidArgumentError("Missing required fields")

        key = story_id(content.conversation_id, content.message_id)
        details = {
            "actor_key": actor_key,
            "counterpart_id": counterpart_id,
            "counterpart_key": target_key,
            "conversation_id": content.conversation_id,
            "message_id": content.message_id,
            "text": content.text,
            "sent_at": ensure_utc(content.sent_at).isoformat() if content.sent_at else None,
        }
        return _Plan(
            kind=kind,
            actor_id=actor_id,
            actor_key=actor_key,
            counterpart_id=counterpart_id,
            target_key=target_key,
            ledger_key=key,
            counterpart_ledger_key=key,
            entity_ref=DocumentRef(QUEUED_STORIES, key),
            conversation=content.conversation_id,
            content=content,
            details=details,
        )

    # Transaction body

    def _transact(self, txn: Transaction, plan: _Plan, intent: Intent) -> MutualResult:
        ledger = self.ledgers[plan.kind]
        actor_ref = ledger.ref(plan.actor_id, plan.ledger_key)
        counterpart_ref = ledger.ref(plan.counterpart_id, plan.counterpart_ledger_key)

        # Read phase
        mine = txn.get(actor_ref)
        theirs = txn.get(counterpart_ref)
        entity = _load_entity(plan.kind, txn.get(plan.entity_ref))

        # Validate phase
        now = self.clock.now()
        noun, already = _NOUNS[plan.kind]
        entity_id = plan.entity_ref.doc_id
        streak = entity.streak_count if isinstance(entity, Connection) else None

        if intent == Intent.REMOVE:
            if mine is None:
                raise NotFoundError(f"{noun} not found")
            if is_entity_locked(entity, now):
                remaining = format_countdown(ensure_utc(entity.lock_expires_at) - now)
                raise LockedError(entity.lock_expires_at,
                                  f"Locked until midnight (~{remaining} remaining)")

            # Write phase: the shared entity keeps its own history
            txn.delete(actor_ref)
            return MutualResult(success=True, streak_count=streak, entity_id=entity_id,
                                message=f"{noun} removed")

        if mine is not None:
            raise AlreadyExistsError(f"Already {already}")

        # Write phase
        entry = LedgerEntry(actor_id=plan.actor_id, target_key=plan.ledger_key, created_at=now,
                            details=plan.details)
        txn.set(actor_ref, entry.to_dict(), owner=plan.actor_id)

        if theirs is None:
            locked = is_entity_locked(entity, now)
            return MutualResult(success=True, locked=locked,
                                lock_expires_at=entity.lock_expires_at if locked else None,
                                streak_count=streak, entity_id=entity_id,
                                message=f"{noun} added")

        if plan.kind == LedgerKind.FAVORITE:
            return self._establish_connection(txn, plan, entity, now)
        return self._queue_story(txn, plan, entity, now)

    def _establish_connection(self, txn: Transaction, plan: _Plan, connection: Optional[Connection],
                              now: datetime) -> MutualResult:
        today = self.clock.today()
        lock_expires_at = new_lock_expiry(self.clock)

        if connection is None:
            connection = Connection(
                id=plan.entity_ref.doc_id,
                participant_ids=list(sorted_pair(plan.actor_id, plan.counterpart_id)),
                created_at=now,
                last_mutual_at=now,
                streak_count=1,
                is_locked=True,
                lock_expires_at=lock_expires_at,
                last_streak_date=today,
                status="active",
                connection_token=generate_connection_token(),
            )
            txn.set(plan.entity_ref, connection.to_dict())
            return MutualResult(success=True, mutual=True, locked=True, lock_expires_at=lock_expires_at,
                                streak_count=1, entity_id=connection.id, entity_created=True,
                                message="Mutual connection established! 🎉")

        update = next_streak(connection.last_streak_date, today, connection.streak_count)
        connection.streak_count = update.count
        connection.last_streak_date = update.date_to_store
        connection.last_mutual_at = now
        connection.is_locked = True
        connection.lock_expires_at = lock_expires_at
        txn.set(plan.entity_ref, connection.to_dict())

        if update.outcome == StreakOutcome.CONTINUED:
            message = f"Mutual connection re-established! 🔥 {update.count}-day streak!"
        else:
            message = f"Mutual connection re-established! Current streak: {update.count}"
        return MutualResult(success=True, mutual=True, locked=True, lock_expires_at=lock_expires_at,
                            streak_count=update.count, entity_id=connection.id,
                            streak_outcome=update.outcome, message=message)

    def _queue_story(self, txn: Transaction, plan: _Plan, story: Optional[QueuedStory],
                     now: datetime) -> MutualResult:
        if story is not None:
            # Stories are created once; later reciprocity does not touch them
            locked = is_entity_locked(story, now)
            return MutualResult(success=True, mutual=True, locked=locked,
                                lock_expires_at=story.lock_expires_at if locked else None,
                                entity_id=story.id, message="Highlight added")

        lock_expires_at = new_lock_expiry(self.clock)
        story = QueuedStory(
            id=plan.entity_ref.doc_id,
            content_snapshot=ContentSnapshot(text=plan.content.text, sent_at=plan.content.sent_at),
            queued_at=now,
            status="pending",
            locked=True,
            lock_expires_at=lock_expires_at,
            conversation_id=plan.content.conversation_id,
            message_id=plan.content.message_id,
            participant_ids=list(sorted_pair(plan.actor_id, plan.counterpart_id)),
        )
        txn.set(plan.entity_ref, story.to_dict())
        return MutualResult(success=True, mutual=True, locked=True, lock_expires_at=lock_expires_at,
                            entity_id=story.id, entity_created=True,
                            message="Both of you highlighted this! Sent for review and locked until midnight.")

    # Post-commit side effects

    def _notify(self, plan: _Plan, intent: Intent, result: MutualResult):
        if self.dispatcher is None or not result.success:
            return

        actor = format_daily_id(plan.actor_key)
        target = format_daily_id(plan.target_key)
        text = None

        if plan.kind == LedgerKind.FAVORITE:
            if intent == Intent.REMOVE:
                text = f"💔 {actor} removed {target} from favorites"
            elif result.mutual:
                streak_info = f" 🔥 {result.streak_count}-day streak!" if (result.streak_count or 0) > 1 else ""
                text = f"💫 You both favorited each other! Connection established!{streak_info}"
            else:
                text = f"⭐ {actor} added {target} to favorites"
        elif intent == Intent.ADD and result.entity_created:
            text = "✨ You both highlighted a message! It has been sent for review."

        if text:
            self.dispatcher.dispatch(plan.conversation, text)


def _coerce(enum_cls, value, name: str):
    try:
        return enum_cls(value)
    except ValueError:
        raise InvalidArgumentError(f"Invalid {name}: {value!r}")


def _load_entity(kind: LedgerKind, document: Optional[Document]):
    if document is None:
        return None
    if kind == LedgerKind.FAVORITE:
        return Connection.from_dict(document.data)
    return QueuedStory.from_dict(document.data)
