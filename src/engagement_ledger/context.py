"""Request-scoped actor context supplied by the identity collaborator."""

from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID


@dataclass(frozen=True)
class ActorContext:
    """Who is acting, for which tenant, and from where."""

    tenant_id: UUID
    actor_id: UUID | None = None
    actor_type: str = "INTERNAL"
    role: str | None = None
    ip_address: str | None = None
