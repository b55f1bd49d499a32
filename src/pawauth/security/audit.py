"""
Audit log for authorization events.
Created: 2026-03-04

Append-only JSONL record of client registrations and deletions, consent
decisions, and token grants. Token and secret values are never written.
"""

from __future__ import annotations

import json
import logging
import uuid
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

logger = logging.getLogger("audit")


@dataclass
class AuditEvent:
    """A single audit log entry."""

    id: str
    timestamp: str
    actor: str  # user id, "internal" or a client id
    action: str  # e.g. "oauth_token", "client_deleted"
    target: str  # e.g. "client:<id>"
    status: str  # "success", "denied", "error"
    context: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def create(
        cls, actor: str, action: str, target: str, status: str = "success", **context: Any
    ) -> AuditEvent:
        return cls(
            id=str(uuid.uuid4()),
            timestamp=datetime.now(tz=UTC).isoformat(),
            actor=actor,
            action=action,
            target=target,
            status=status,
            context=context,
        )


class AuditLogger:
    """Writes events to *log_path* (if given) and to the ``audit`` logger."""

    def __init__(self, log_path: Path | None = None):
        self.log_path = log_path
        if log_path is not None:
            log_path.parent.mkdir(parents=True, exist_ok=True)

    def log(self, event: AuditEvent) -> None:
        event_dict = asdict(event)
        logger.info("%s %s %s %s", event.action, event.status, event.actor, event.target)
        if self.log_path is None:
            return
        try:
            with open(self.log_path, "a", encoding="utf-8") as f:
                f.write(json.dumps(event_dict) + "\n")
        except OSError:
            logger.exception("Failed to write audit event %s", event.id)

    def log_oauth_event(
        self, action: str, actor: str, target: str, status: str = "success", **context: Any
    ) -> None:
        self.log(AuditEvent.create(actor, action, target, status, **context))
