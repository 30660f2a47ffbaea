"""Append-only leave audit log: model and async helper for recording transitions."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Mapped, mapped_column

from timeoff.common.constants import AuditAction
from timeoff.database import Base


# ── Immutable audit-trail table ─────────────────────────────────────

class LeaveAuditLog(Base):
    """One row per successful state transition of a leave request.

    Rows are only ever inserted; ``sequence`` orders entries of the same
    request even when two share a timestamp.
    """

    __tablename__ = "leave_audit_logs"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    leave_request_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("leave_requests.id"),
        nullable=False,
    )
    sequence: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    action: Mapped[AuditAction] = mapped_column(
        sa.Enum(AuditAction, name="leave_audit_action", native_enum=False, length=20),
        nullable=False,
    )
    performed_by: Mapped[str] = mapped_column(sa.String(64), nullable=False)
    performed_by_role: Mapped[str] = mapped_column(sa.String(32), nullable=False)
    context: Mapped[Optional[dict]] = mapped_column(JSONB)
    timestamp: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        sa.UniqueConstraint(
            "leave_request_id", "sequence", name="uq_leave_audit_request_seq"
        ),
        sa.Index("ix_leave_audit_request", "leave_request_id"),
        sa.Index("ix_leave_audit_timestamp", "timestamp"),
    )

    def __repr__(self) -> str:
        return (
            f"<LeaveAuditLog #{self.sequence} {self.action} "
            f"request={self.leave_request_id} by {self.performed_by}>"
        )


# ── Helper to create an entry ───────────────────────────────────────

async def create_audit_entry(
    session: AsyncSession,
    *,
    leave_request_id: uuid.UUID,
    action: AuditAction,
    performed_by: Any,
    performed_by_role: str,
    context: Optional[dict[str, Any]] = None,
) -> LeaveAuditLog:
    """
    Append and flush an audit entry for a leave request.

    Args:
        session: Async SQLAlchemy session of the current unit of work.
        leave_request_id: The request whose state changed.
        action: created | updated | approved | rejected | cancelled.
        performed_by: Actor id (uuid) or the ``SYSTEM`` marker.
        performed_by_role: Role the actor acted in.
        context: JSON-safe snapshot (balances before/after, delegation, ...).
    """
    last = await session.execute(
        sa.select(sa.func.max(LeaveAuditLog.sequence)).where(
            LeaveAuditLog.leave_request_id == leave_request_id
        )
    )
    entry = LeaveAuditLog(
        leave_request_id=leave_request_id,
        sequence=(last.scalar() or 0) + 1,
        action=action,
        performed_by=str(performed_by),
        performed_by_role=performed_by_role,
        context=context,
    )
    session.add(entry)
    await session.flush()
    return entry


async def list_audit_entries(
    session: AsyncSession,
    leave_request_id: uuid.UUID,
) -> list[LeaveAuditLog]:
    """Return the request's audit trail in transition order."""
    result = await session.execute(
        sa.select(LeaveAuditLog)
        .where(LeaveAuditLog.leave_request_id == leave_request_id)
        .order_by(LeaveAuditLog.sequence)
    )
    return list(result.scalars().all())
