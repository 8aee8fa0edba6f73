"""Tenant and user models."""

from __future__ import annotations

from uuid import UUID, uuid4

from sqlalchemy import CheckConstraint, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column

from engagement_ledger.models.base import Base, TimestampMixin


class Tenant(Base, TimestampMixin):
    """Multi-tenant container."""

    __tablename__ = "tenant"

    tenant_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String, nullable=False)
    base_currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")


class AppUser(Base, TimestampMixin):
    """User record owned by the identity provider, mirrored for payroll export."""

    __tablename__ = "app_user"

    user_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    tenant_id: Mapped[UUID] = mapped_column(
        ForeignKey("tenant.tenant_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    first_name: Mapped[str] = mapped_column(String, nullable=False)
    last_name: Mapped[str] = mapped_column(String, nullable=False)
    email: Mapped[str] = mapped_column(String, nullable=False)
    user_type: Mapped[str] = mapped_column(String, nullable=False, default="INTERNAL")

    __table_args__ = (
        CheckConstraint("user_type IN ('INTERNAL', 'CLIENT')", name="app_user_type_check"),
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"
