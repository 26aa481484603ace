"""
Post-commit notifications into the conversation transport.

Delivery is fire-and-forget: the engine hands a message to the dispatcher
after its transaction commits and never waits for, retries, or reports the
outcome.
"""

from concurrent.futures import Future, ThreadPoolExecutor
from typing import Optional

from .config import NOTIFICATION_WORKERS, NOTIFICATIONS_ENABLED
from ..util.logging import logger


class NotificationSink:
    """Destination for system messages in a conversation."""

    def post(self, conversation_key: str, text: str) -> None:
        raise NotImplementedError


class LoggingNotificationSink(NotificationSink):
    """Default sink: writes system messages to the log."""

    def post(self, conversation_key: str, text: str) -> None:
        logger.info(f"System message to {conversation_key}: {text}")


class NotificationDispatcher:
    """Runs sink posts as detached tasks on a small worker pool."""

    def __init__(self, sink: NotificationSink = None, enabled: bool = NOTIFICATIONS_ENABLED,
                 max_workers: int = NOTIFICATION_WORKERS):
        self.sink = sink or LoggingNotificationSink()
        self.enabled = enabled
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="notify")

    def dispatch(self, conversation_key: str, text: str) -> Optional[Future]:
        if not self.enabled:
            return None
        try:
            return self._executor.submit(self._deliver, conversation_key, text)
        except RuntimeError as e:
            # Executor already shut down
            logger.log_notification(conversation_key, status="dropped", error=str(e))
            return None

    def _deliver(self, conversation_key: str, text: str) -> bool:
        try:
            self.sink.post(conversation_key, text)
            logger.log_notification(conversation_key)
            return True
        except Exception as e:
            logger.log_notification(conversation_key, status="failed", error=str(e))
            return False

    def shutdown(self, wait: bool = True):
        self._executor.shutdown(wait=wait)
