"""
Structured operation logging for ledger writes, mutual-state transitions and reviews.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional


class StructuredLogger:
    """Structured logger for engine, review and notification operations."""

    def __init__(self, name: str = "mutualstate"):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(logging.INFO)

        # Create handler if not already set
        if not self.logger.handlers:
            handler = logging.StreamHandler()
            formatter = logging.Formatter(
                '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
            )
            handler.setFormatter(formatter)
            self.logger.addHandler(handler)

    def log_operation(self, operation: str, status: str, details: Dict[str, Any] = None):
        """Log a structured operation."""
        message = f"Operation: {operation}, Status: {status}"
        if details:
            message += f", Details: {details}"

        self.logger.info(message)

    def log_ledger_operation(self, kind: str, operation: str, actor_id: str, target_key: str, status: str = "success"):
        """Log a ledger write (favorite/highlight add or remove)."""
        details = {"actor_id": actor_id, "target_key": target_key}
        self.log_operation(f"ledger.{kind}.{operation}", status, details)

    def log_mutual_event(self, kind: str, entity_id: str, created: bool, streak_count: Optional[int] = None,
                         lock_expires_at: Optional[datetime] = None):
        """Log reciprocity being established or renewed."""
        details = {"entity_id": entity_id, "created": created}
        if streak_count is not None:
            details["streak_count"] = streak_count
        if lock_expires_at is not None:
            details["lock_expires_at"] = lock_expires_at.isoformat()

        self.log_operation(f"mutual.{kind}", "established" if created else "renewed", details)

    def log_lock_block(self, operation: str, entity_id: str, lock_expires_at: Optional[datetime]):
        """Log an operation refused because the shared entity is still locked."""
        details = {
            "entity_id": entity_id,
            "lock_expires_at": lock_expires_at.isoformat() if lock_expires_at else None
        }
        self.log_operation(f"{operation}.blocked", "locked", details)

    def log_transaction_retry(self, attempt: int, max_attempts: int, reason: str = ""):
        """Log a transaction conflict that will be retried from the read phase."""
        details = {"attempt": attempt, "max_attempts": max_attempts}
        if reason:
            details["reason"] = reason[:100]
        self.log_operation("transaction.retry", "conflict", details)

    def log_review_decision(self, story_id: str, decision: str, admin_id: str, reason: str = ""):
        """Log an admin review decision."""
        log_details = {
            "story_id": story_id,
            "decision": decision,
            "admin_id": admin_id,
            "reason": reason[:100] if reason else ""  # Limit reason length
        }
        self.log_operation("review.decision", decision, log_details)

    def log_notification(self, conversation_key: str, status: str = "sent", error: str = None):
        """Log a post-commit notification delivery."""
        details = {"conversation_key": conversation_key}
        if error:
            details["error"] = error[:100]
        self.log_operation("notification.post", status, details)

    # Standard logging methods for compatibility
    def info(self, message: str) -> None:
        """Log an info message."""
        self.logger.info(message)

    def warning(self, message: str) -> None:
        """Log a warning message."""
        self.logger.warning(message)

    def error(self, message: str) -> None:
        """Log an error message."""
        self.logger.error(message)

    def debug(self, message: str) -> None:
        """Log a debug message."""
        self.logger.debug(message)


# Global logger instance
logger = StructuredLogger()


def audit_event(event_type: str, identifiers: Dict[str, Any], payload: Dict[str, Any] = None, sensitive_fields: List[str] = None):
    """General audit event logging with privacy controls."""
    if sensitive_fields is None:
        sensitive_fields = ['text', 'content', 'message_text', 'secret', 'token']

    log_details = identifiers.copy() if identifiers else {}

    if payload:
        log_details["payload"] = sanitize_payload(payload, sensitive_fields=sensitive_fields)

    logger.log_operation(event_type.replace(".", "_"), "audit", log_details)


def sanitize_payload(payload: Any, reveal_sensitive: bool = False, sensitive_fields: List[str] = None) -> Any:
    """Sanitize payloads for audit logging."""
    if sensitive_fields is None:
        sensitive_fields = ['text', 'content', 'message_text', 'secret', 'token']

    if isinstance(payload, dict):
        sanitized = {}
        for k, v in payload.items():
            if reveal_sensitive or k not in sensitive_fields:
                sanitized[k] = sanitize_payload(v, reveal_sensitive, sensitive_fields)
            else:
                sanitized[k] = "[REDACTED]"
        return sanitized
    elif isinstance(payload, str):
        # Truncate long strings
        return payload[:100] + "..." if len(payload) > 100 else payload
    elif isinstance(payload, list):
        return [sanitize_payload(item, reveal_sensitive, sensitive_fields) for item in payload]
    else:
        return payload
