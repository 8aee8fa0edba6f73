"""Append-only audit trail and FX rate log models."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Index, String, event
from sqlalchemy.orm import Mapped, mapped_column

from engagement_ledger.errors import ImmutableRecordError
from engagement_ledger.models.base import Base, utcnow


class AuditEvent(Base):
    """Audit trail entry."""

    __tablename__ = "audit_event"

    audit_event_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    tenant_id: Mapped[UUID] = mapped_column(
        ForeignKey("tenant.tenant_id", ondelete="CASCADE"),
        nullable=False,
    )
    entity_type: Mapped[str] = mapped_column(String, nullable=False)
    entity_id: Mapped[str] = mapped_column(String, nullable=False)
    action: Mapped[str] = mapped_column(String, nullable=False)
    before_json: Mapped[dict[str, Any] | None] = mapped_column(nullable=True)
    after_json: Mapped[dict[str, Any] | None] = mapped_column(nullable=True)
    actor_id: Mapped[UUID | None] = mapped_column(nullable=True)
    actor_type: Mapped[str | None] = mapped_column(String, nullable=True)
    ip_address: Mapped[str | None] = mapped_column(String, nullable=True)
    occurred_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    retain_until: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        CheckConstraint(
            "action IN ('CREATE', 'UPDATE', 'DELETE')",
            name="audit_event_action_check",
        ),
        Index("audit_event_entity_idx", "tenant_id", "entity_type", "entity_id"),
    )


class FxRateLog(Base):
    """One fetch of all rates for a base currency; never updated."""

    __tablename__ = "fx_rate_log"

    fx_rate_log_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    tenant_id: Mapped[UUID] = mapped_column(
        ForeignKey("tenant.tenant_id", ondelete="CASCADE"),
        nullable=False,
    )
    source: Mapped[str] = mapped_column(String, nullable=False)
    base_currency: Mapped[str] = mapped_column(String(3), nullable=False)
    rates: Mapped[dict[str, Any]] = mapped_column(nullable=False)
    fetched_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    __table_args__ = (
        Index("fx_rate_log_lookup_idx", "tenant_id", "base_currency", "fetched_at"),
    )


def _as_aware(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything is stored as UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


@event.listens_for(AuditEvent, "before_update")
def _reject_audit_update(mapper, connection, target: AuditEvent) -> None:
    raise ImmutableRecordError(
        f"Audit event {target.audit_event_id} is immutable",
        audit_event_id=target.audit_event_id,
    )


@event.listens_for(AuditEvent, "before_delete")
def _reject_early_audit_delete(mapper, connection, target: AuditEvent) -> None:
    if _as_aware(target.retain_until) > utcnow():
        raise ImmutableRecordError(
            f"Audit event {target.audit_event_id} is retained until {target.retain_until}",
            audit_event_id=target.audit_event_id,
        )


@event.listens_for(FxRateLog, "before_update")
def _reject_fx_log_update(mapper, connection, target: FxRateLog) -> None:
    raise ImmutableRecordError(
        f"FX rate log {target.fx_rate_log_id} is append-only",
        fx_rate_log_id=target.fx_rate_log_id,
    )
