"""Audit event payloads for backup and restore invocations.

The engine builds one structured event per invocation and hands it to a
sink.  Transport belongs to the caller; the default sink writes the event
to the ``opsnap.audit`` logger.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Protocol

from pydantic import BaseModel

audit_logger = logging.getLogger("opsnap.audit")


class AuditActor(BaseModel):
    """Who invoked the operation, as reported by the access-control layer."""

    id: str | None = None
    email: str | None = None


class AuditSink(Protocol):
    def __call__(self, event: dict[str, Any]) -> None:
        ...


def audit_event(
    event: str,
    actor: AuditActor | None = None,
    **data: Any,
) -> dict[str, Any]:
    """Build an audit payload; ``None`` values in ``data`` are dropped."""
    payload: dict[str, Any] = {
        "event": event,
        "at": datetime.now(timezone.utc).isoformat(),
    }
    if actor is not None:
        if actor.id:
            payload["actorId"] = actor.id
        if actor.email:
            payload["actorEmail"] = actor.email
    for key, value in data.items():
        if value is not None:
            payload[key] = value
    return payload


def log_audit_sink(event: dict[str, Any]) -> None:
    """Default sink: one INFO record per event on ``opsnap.audit``."""
    audit_logger.info(event["event"], extra={"audit": event})
