"""
Identity resolution for rotating daily identifiers.

Actors are known to each other only by an 8-digit id that changes at every
daily reset. The engine resolves these before opening a transaction.
"""

import random
from datetime import datetime
from typing import Optional

from .clock import DayClock
from .config import DAILY_ID_MAX_ATTEMPTS
from .documents import DocumentRef, DocumentStore
from .errors import InvalidArgumentError, UnavailableError
from ..util.logging import logger

DAILY_IDS = "daily_ids"
ACTOR_DAILY_IDS = "actor_daily_ids"


def generate_daily_id() -> str:
    """Random 8-digit numeric id."""
    return str(random.randint(10000000, 99999999))


def format_daily_id(daily_id: str) -> str:
    """Format a daily id for display with spacing."""
    if len(daily_id) != 8:
        return daily_id
    return f"{daily_id[:4]} {daily_id[4:]}"


class IdentityResolver:
    """Maps rotating keys to stable actor ids and back."""

    def resolve(self, rotating_key: str) -> Optional[str]:
        raise NotImplementedError

    def current_key(self, actor_id: str) -> Optional[str]:
        raise NotImplementedError


class DailyIdDirectory(IdentityResolver):
    """Store-backed directory of daily ids that expire at the next reset."""

    def __init__(self, store: DocumentStore, clock: DayClock, max_attempts: int = DAILY_ID_MAX_ATTEMPTS):
        self.store = store
        self.clock = clock
        self.max_attempts = max_attempts

    def _is_current(self, data: dict) -> bool:
        return datetime.fromisoformat(data["expires_at"]) > self.clock.now()

    def resolve(self, rotating_key: str) -> Optional[str]:
        if not rotating_key:
            return None
        document = self.store.get(DocumentRef(DAILY_IDS, rotating_key))
        if document is None or not self._is_current(document.data):
            return None
        return document.data["actor_id"]

    def current_key(self, actor_id: str) -> Optional[str]:
        if not actor_id:
            return None
        document = self.store.get(DocumentRef(ACTOR_DAILY_IDS, actor_id))
        if document is None or not self._is_current(document.data):
            return None
        return document.data["key"]

    def issue(self, actor_id: str) -> str:
        """Return the actor's id for today, allocating a fresh unique one if needed."""
        if not actor_id or not actor_id.strip():
            raise InvalidArgumentError("actor_id is required")

        def allocate(txn):
            actor_ref = DocumentRef(ACTOR_DAILY_IDS, actor_id)
            existing = txn.get(actor_ref)
            if existing is not None and self._is_current(existing.data):
                return existing.data["key"]

            # All candidate reads happen before any write
            for _ in range(self.max_attempts):
                candidate = generate_daily_id()
                taken = txn.get(DocumentRef(DAILY_IDS, candidate))
                if taken is None or not self._is_current(taken.data):
                    self._write(txn, actor_id, candidate)
                    return candidate

            raise UnavailableError(f"Could not allocate a unique daily id after {self.max_attempts} attempts")

        key = self.store.run_transaction(allocate)
        logger.log_operation("identity.issue", "success", {"actor_id": actor_id})
        return key

    def refresh(self, actor_id: str) -> str:
        """Replace the actor's current id with a new one; the old id stops resolving at once."""
        if not actor_id or not actor_id.strip():
            raise InvalidArgumentError("actor_id is required")

        def rotate(txn):
            actor_ref = DocumentRef(ACTOR_DAILY_IDS, actor_id)
            existing = txn.get(actor_ref)
            old_ref = None
            if existing is not None:
                old_ref = DocumentRef(DAILY_IDS, existing.data["key"])
                old = txn.get(old_ref)
                if old is None or old.data["actor_id"] != actor_id:
                    old_ref = None

            for _ in range(self.max_attempts):
                candidate = generate_daily_id()
                candidate_ref = DocumentRef(DAILY_IDS, candidate)
                if candidate_ref == old_ref:
                    continue
                taken = txn.get(candidate_ref)
                if taken is None or not self._is_current(taken.data):
                    if old_ref is not None:
                        txn.delete(old_ref)
                    self._write(txn, actor_id, candidate)
                    return candidate

            raise UnavailableError(f"Could not allocate a unique daily id after {self.max_attempts} attempts")

        key = self.store.run_transaction(rotate)
        logger.log_operation("identity.refresh", "success", {"actor_id": actor_id})
        return key

    def assign(self, actor_id: str, key: str):
        """Pin a specific daily id to an actor until the next reset."""
        if not actor_id or not key:
            raise InvalidArgumentError("actor_id and key are required")

        def write(txn):
            txn.get(DocumentRef(ACTOR_DAILY_IDS, actor_id))
            txn.get(DocumentRef(DAILY_IDS, key))
            self._write(txn, actor_id, key)

        self.store.run_transaction(write)

    def _write(self, txn, actor_id: str, key: str):
        issued_at = self.clock.now()
        expires_at = self.clock.boundary_of_next_day()
        txn.set(DocumentRef(DAILY_IDS, key), {
            "actor_id": actor_id,
            "key": key,
            "issued_at": issued_at.isoformat(),
            "expires_at": expires_at.isoformat(),
        }, owner=actor_id)
        txn.set(DocumentRef(ACTOR_DAILY_IDS, actor_id), {
            "key": key,
            "expires_at": expires_at.isoformat(),
        }, owner=actor_id)
