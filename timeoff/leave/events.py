"""Audit / event emission for leave request transitions.

Each successful transition writes one audit row and publishes one
``LeaveEvent`` to the configured sink, both inside the caller's unit of
work. A failure of either propagates so the whole transition rolls back.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Optional, Protocol

from timeoff.common.audit import LeaveAuditLog
from timeoff.common.constants import AuditAction
from timeoff.leave.models import LeaveRequest
from timeoff.leave.repositories import AuditRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LeaveEvent:
    type: str
    request_id: uuid.UUID
    actor_id: str
    payload: dict[str, Any] = field(default_factory=dict)


class EventSink(Protocol):
    async def publish(self, event: LeaveEvent) -> None: ...


class LoggingEventSink:
    """Default sink: records events in the application log."""

    async def publish(self, event: LeaveEvent) -> None:
        logger.info(
            "event %s request=%s actor=%s", event.type, event.request_id, event.actor_id
        )


class EventEmitter:
    def __init__(self, audit: AuditRepository, sink: EventSink) -> None:
        self.audit = audit
        self.sink = sink

    async def emit(
        self,
        request: LeaveRequest,
        action: AuditAction,
        *,
        actor_id: Any,
        actor_role: str,
        context: Optional[dict[str, Any]] = None,
    ) -> LeaveAuditLog:
        entry = await self.audit.append(
            leave_request_id=request.id,
            action=action,
            performed_by=actor_id,
            performed_by_role=actor_role,
            context=context,
        )
        event = LeaveEvent(
            type=f"leave.{action.value}",
            request_id=request.id,
            actor_id=str(actor_id),
            payload={
                "status": request.status.value,
                "employee_id": str(request.employee_id),
                "sequence": entry.sequence,
                **(context or {}),
            },
        )
        try:
            await self.sink.publish(event)
        except Exception:
            logger.error("Event sink failed for %s on request %s", event.type, request.id)
            raise
        return entry
