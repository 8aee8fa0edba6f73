"""Audit recorder: one immutable AuditEvent per create/update/delete."""

from __future__ import annotations

import json
from datetime import datetime
from enum import Enum
from typing import Any, Iterable
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from engagement_ledger.config import get_settings
from engagement_ledger.context import ActorContext
from engagement_ledger.models import AuditEvent, Base, utcnow


class AuditAction(str, Enum):
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


def to_jsonable(data: dict[str, Any] | None) -> dict[str, Any] | None:
    """Render Decimals, UUIDs and dates as strings so the payload fits a JSON column."""
    if data is None:
        return None
    return json.loads(json.dumps(data, sort_keys=True, default=str))


def snapshot(model: Base, exclude: Iterable[str] = ()) -> dict[str, Any]:
    """JSON-safe copy of a row's column values."""
    data = model.to_dict()
    for key in exclude:
        data.pop(key, None)
    return to_jsonable(data) or {}


def compute_diff(
    before: dict[str, Any], after: dict[str, Any]
) -> tuple[dict[str, Any], dict[str, Any]]:
    """Keep only the keys whose values changed between two snapshots."""
    before_diff: dict[str, Any] = {}
    after_diff: dict[str, Any] = {}
    for key in after:
        if before.get(key) != after.get(key):
            before_diff[key] = before.get(key)
            after_diff[key] = after.get(key)
    return before_diff, after_diff


def retention_deadline(occurred_at: datetime, years: int) -> datetime:
    """occurred_at + N calendar years; Feb 29 rolls back to Feb 28."""
    try:
        return occurred_at.replace(year=occurred_at.year + years)
    except ValueError:
        return occurred_at.replace(year=occurred_at.year + years, day=28)


class AuditRecorder:
    """Writes audit events inside the caller's transaction.

    Each event is flushed as soon as it is recorded, so it is written before
    the operation returns. A rolled-back operation leaves no audit trace.
    """

    def __init__(self, session: AsyncSession, retention_years: int | None = None):
        self.session = session
        self.retention_years = (
            retention_years
            if retention_years is not None
            else get_settings().audit_retention_years
        )

    async def record(
        self,
        ctx: ActorContext,
        entity_type: str,
        entity_id: UUID | str,
        action: AuditAction | str,
        before: dict[str, Any] | None = None,
        after: dict[str, Any] | None = None,
    ) -> AuditEvent:
        """Append one audit event and flush it with the pending changes."""
        occurred_at = utcnow()
        event = AuditEvent(
            tenant_id=ctx.tenant_id,
            entity_type=entity_type,
            entity_id=str(entity_id),
            action=action.value if isinstance(action, AuditAction) else action,
            before_json=to_jsonable(before),
            after_json=to_jsonable(after),
            actor_id=ctx.actor_id,
            actor_type=ctx.actor_type,
            ip_address=ctx.ip_address,
            occurred_at=occurred_at,
            retain_until=retention_deadline(occurred_at, self.retention_years),
        )
        self.session.add(event)
        await self.session.flush()
        return event

    async def record_create(
        self,
        ctx: ActorContext,
        entity_type: str,
        entity_id: UUID | str,
        after: dict[str, Any],
    ) -> AuditEvent:
        return await self.record(ctx, entity_type, entity_id, AuditAction.CREATE, None, after)

    async def record_update(
        self,
        ctx: ActorContext,
        entity_type: str,
        entity_id: UUID | str,
        before: dict[str, Any],
        after: dict[str, Any],
    ) -> AuditEvent:
        """Record only the fields that changed."""
        before_diff, after_diff = compute_diff(to_jsonable(before) or {}, to_jsonable(after) or {})
        return await self.record(ctx, entity_type, entity_id, AuditAction.UPDATE, before_diff, after_diff)

    async def record_delete(
        self,
        ctx: ActorContext,
        entity_type: str,
        entity_id: UUID | str,
        before: dict[str, Any],
    ) -> AuditEvent:
        return await self.record(ctx, entity_type, entity_id, AuditAction.DELETE, before, None)
