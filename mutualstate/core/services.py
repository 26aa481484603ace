"""
Wiring of store, clock, collaborators and the engine into one bundle.
"""

import threading
from dataclasses import dataclass
from typing import Optional

from .clock import DayClock
from .config import DB_PATH, validate_config
from .documents import DocumentStore
from .engine import MutualStateEngine
from .identity import DailyIdDirectory, IdentityResolver
from .notifications import NotificationDispatcher, NotificationSink
from .review import ReviewWorkflow
from .status import StatusProjector
from ..util.logging import logger


@dataclass
class Services:
    store: DocumentStore
    clock: DayClock
    identity: IdentityResolver
    dispatcher: NotificationDispatcher
    engine: MutualStateEngine
    review: ReviewWorkflow
    status: StatusProjector

    def close(self):
        self.dispatcher.shutdown(wait=True)


def build_services(db_path: str = None, clock: DayClock = None, identity: IdentityResolver = None,
                   sink: NotificationSink = None, notifications_enabled: bool = None) -> Services:
    """Assemble a full service bundle; every collaborator can be replaced."""
    issues = validate_config()
    if issues:
        raise ValueError(f"Configuration invalid: {issues}")

    store = DocumentStore(db_path or DB_PATH)
    clock = clock or DayClock()
    identity = identity or DailyIdDirectory(store, clock)
    if notifications_enabled is None:
        dispatcher = NotificationDispatcher(sink)
    else:
        dispatcher = NotificationDispatcher(sink, enabled=notifications_enabled)
    engine = MutualStateEngine(store, clock, identity, dispatcher=dispatcher)

    return Services(
        store=store,
        clock=clock,
        identity=identity,
        dispatcher=dispatcher,
        engine=engine,
        review=ReviewWorkflow(store, clock),
        status=StatusProjector(engine),
    )


_services: Optional[Services] = None
_services_lock = threading.Lock()


def get_services() -> Services:
    """Process-wide service bundle built from configuration on first use."""
    global _services
    with _services_lock:
        if _services is None:
            _services = build_services()
            logger.info(f"Mutual-state services initialized (db={_services.store.db_path})")
        return _services


def reset_services():
    """Drop the process-wide bundle (used on shutdown and in tests)."""
    global _services
    with _services_lock:
        if _services is not None:
            _services.close()
        _services = None
