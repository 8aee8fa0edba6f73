"""Typed failures raised by the workflow services."""

from __future__ import annotations

from typing import Any
from uuid import UUID


class EngagementLedgerError(Exception):
    """Base class for all domain failures."""

    code = "ERROR"
    retryable = False

    def __init__(self, message: str, **details: Any):
        self.message = message
        self.details = details
        super().__init__(message)


class NotFoundError(EngagementLedgerError):
    """Entity missing or owned by another tenant.

    Both cases produce the same message so callers cannot probe for
    records belonging to other tenants.
    """

    code = "NOT_FOUND"

    def __init__(self, entity_type: str, entity_id: UUID | str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"{entity_type} {entity_id} not found")


class InvalidTransitionError(EngagementLedgerError):
    """Raised when an operation is not legal from the current status."""

    code = "INVALID_STATE_TRANSITION"

    def __init__(self, from_status: str, action: str, reason: str | None = None):
        self.from_status = from_status
        self.action = action
        self.reason = reason
        msg = f"Cannot apply '{action}' from status '{from_status}'"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class ValidationFailedError(EngagementLedgerError):
    """Missing or malformed required fields."""

    code = "VALIDATION_FAILED"


class NoActiveRateCardError(EngagementLedgerError):
    """Tenant has no active rate card."""

    code = "NO_ACTIVE_RATE_CARD"

    def __init__(self, tenant_id: UUID):
        self.tenant_id = tenant_id
        super().__init__(f"No active rate card for tenant {tenant_id}")


class NoPayRateFoundError(EngagementLedgerError):
    """Contractor has no pay rate effective on or before the date."""

    code = "NO_PAY_RATE_FOUND"

    def __init__(self, user_id: UUID, as_of: Any):
        self.user_id = user_id
        self.as_of = as_of
        super().__init__(f"No pay rate found for contractor {user_id} as of {as_of}")


class RateUnavailableError(EngagementLedgerError):
    """The fetched rate set does not contain the target currency."""

    code = "RATE_UNAVAILABLE"

    def __init__(self, from_currency: str, to_currency: str):
        self.from_currency = from_currency
        self.to_currency = to_currency
        super().__init__(f"FX rate not available for {from_currency} -> {to_currency}")


class RateSourceUnreachableError(EngagementLedgerError):
    """The external FX rate source failed or timed out."""

    code = "RATE_SOURCE_UNREACHABLE"
    retryable = True


class AlreadyProvisionedError(EngagementLedgerError):
    """A project already exists for the proposal."""

    code = "ALREADY_PROVISIONED"

    def __init__(self, proposal_id: UUID, project_id: UUID):
        self.proposal_id = proposal_id
        self.project_id = project_id
        super().__init__(f"Proposal {proposal_id} already provisioned as project {project_id}")


class NumberingConflictError(EngagementLedgerError):
    """Invoice number collision detected; the whole approval may be retried."""

    code = "NUMBERING_CONFLICT"
    retryable = True


class ImmutableRecordError(EngagementLedgerError):
    """Attempt to rewrite or prematurely remove an append-only record."""

    code = "IMMUTABLE_RECORD"
