"""Status enums and transition tables for the workflow entities."""

from __future__ import annotations

from enum import Enum
from typing import ClassVar

from engagement_ledger.errors import InvalidTransitionError


class ProposalStatus(str, Enum):
    """Proposal status values."""

    DRAFT = "DRAFT"
    PENDING_REVIEW = "PENDING_REVIEW"
    PENDING_APPROVAL = "PENDING_APPROVAL"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    SUPERSEDED = "SUPERSEDED"


class ProposalAction(str, Enum):
    SUBMIT = "submit"
    INTERNAL_APPROVE = "internal_approve"
    INTERNAL_REJECT = "internal_reject"
    CLIENT_APPROVE = "client_approve"
    CLIENT_REJECT = "client_reject"
    REVISE = "revise"
    SUPERSEDE = "supersede"


class ApprovalType(str, Enum):
    INTERNAL_REVIEW = "INTERNAL_REVIEW"
    CLIENT_APPROVAL = "CLIENT_APPROVAL"


class ApprovalDecision(str, Enum):
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class InvoiceDraftStatus(str, Enum):
    """Invoice draft status values."""

    DRAFT = "DRAFT"
    PENDING_APPROVAL = "PENDING_APPROVAL"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class InvoiceDraftAction(str, Enum):
    SUBMIT = "submit"
    APPROVE = "approve"
    REJECT = "reject"


class InvoiceStatus(str, Enum):
    ISSUED = "ISSUED"
    VOID = "VOID"


class PayRunStatus(str, Enum):
    """Contractor pay run status values."""

    DRAFT = "DRAFT"
    PENDING_APPROVAL = "PENDING_APPROVAL"
    APPROVED = "APPROVED"
    EXPORTED = "EXPORTED"


class PayRunAction(str, Enum):
    SUBMIT = "submit"
    APPROVE = "approve"
    EXPORT = "export"


class StateMachine:
    """Transition table keyed by (current status, action).

    Subclasses fill in TRANSITIONS; every legality check in the services
    goes through next_status so there is a single place to read the rules.
    """

    TRANSITIONS: ClassVar[dict[tuple[str, str], str]] = {}

    @classmethod
    def next_status(cls, current: str, action: str) -> str:
        """Return the resulting status, raising InvalidTransitionError if illegal."""
        key = (_value(current), _value(action))
        if key not in cls.TRANSITIONS:
            raise InvalidTransitionError(key[0], key[1])
        return cls.TRANSITIONS[key]


def _value(item: str) -> str:
    return item.value if isinstance(item, Enum) else item


class ProposalStateMachine(StateMachine):
    """Proposal lifecycle.

    - DRAFT → PENDING_REVIEW (submit)
    - PENDING_REVIEW → PENDING_APPROVAL | REJECTED (internal review)
    - PENDING_APPROVAL → APPROVED | REJECTED (client approval)
    - REJECTED → DRAFT (revise)
    - any non-terminal → SUPERSEDED (a newer version was created)
    """

    NON_TERMINAL: ClassVar[frozenset[str]] = frozenset(
        {
            ProposalStatus.DRAFT.value,
            ProposalStatus.PENDING_REVIEW.value,
            ProposalStatus.PENDING_APPROVAL.value,
        }
    )

    TRANSITIONS = {
        (ProposalStatus.DRAFT.value, ProposalAction.SUBMIT.value): ProposalStatus.PENDING_REVIEW.value,
        (ProposalStatus.PENDING_REVIEW.value, ProposalAction.INTERNAL_APPROVE.value): ProposalStatus.PENDING_APPROVAL.value,
        (ProposalStatus.PENDING_REVIEW.value, ProposalAction.INTERNAL_REJECT.value): ProposalStatus.REJECTED.value,
        (ProposalStatus.PENDING_APPROVAL.value, ProposalAction.CLIENT_APPROVE.value): ProposalStatus.APPROVED.value,
        (ProposalStatus.PENDING_APPROVAL.value, ProposalAction.CLIENT_REJECT.value): ProposalStatus.REJECTED.value,
        (ProposalStatus.REJECTED.value, ProposalAction.REVISE.value): ProposalStatus.DRAFT.value,
        (ProposalStatus.DRAFT.value, ProposalAction.SUPERSEDE.value): ProposalStatus.SUPERSEDED.value,
        (ProposalStatus.PENDING_REVIEW.value, ProposalAction.SUPERSEDE.value): ProposalStatus.SUPERSEDED.value,
        (ProposalStatus.PENDING_APPROVAL.value, ProposalAction.SUPERSEDE.value): ProposalStatus.SUPERSEDED.value,
    }

    DECISIONS: ClassVar[dict[tuple[str, str], str]] = {
        (ApprovalType.INTERNAL_REVIEW.value, ApprovalDecision.APPROVED.value): ProposalAction.INTERNAL_APPROVE.value,
        (ApprovalType.INTERNAL_REVIEW.value, ApprovalDecision.REJECTED.value): ProposalAction.INTERNAL_REJECT.value,
        (ApprovalType.CLIENT_APPROVAL.value, ApprovalDecision.APPROVED.value): ProposalAction.CLIENT_APPROVE.value,
        (ApprovalType.CLIENT_APPROVAL.value, ApprovalDecision.REJECTED.value): ProposalAction.CLIENT_REJECT.value,
    }

    @classmethod
    def action_for_decision(cls, approval_type: str, decision: str) -> str:
        """Map an approval (type, decision) pair onto a table action."""
        return cls.DECISIONS[(_value(approval_type), _value(decision))]

    @classmethod
    def is_non_terminal(cls, status: str) -> bool:
        return _value(status) in cls.NON_TERMINAL

    @classmethod
    def is_editable(cls, status: str) -> bool:
        """Jobs and estimates may only change while the proposal is a draft."""
        return _value(status) == ProposalStatus.DRAFT.value


class InvoiceDraftStateMachine(StateMachine):
    """DRAFT → PENDING_APPROVAL → APPROVED | REJECTED."""

    TRANSITIONS = {
        (InvoiceDraftStatus.DRAFT.value, InvoiceDraftAction.SUBMIT.value): InvoiceDraftStatus.PENDING_APPROVAL.value,
        (InvoiceDraftStatus.PENDING_APPROVAL.value, InvoiceDraftAction.APPROVE.value): InvoiceDraftStatus.APPROVED.value,
        (InvoiceDraftStatus.PENDING_APPROVAL.value, InvoiceDraftAction.REJECT.value): InvoiceDraftStatus.REJECTED.value,
    }


class PayRunStateMachine(StateMachine):
    """DRAFT → PENDING_APPROVAL → APPROVED → EXPORTED."""

    TRANSITIONS = {
        (PayRunStatus.DRAFT.value, PayRunAction.SUBMIT.value): PayRunStatus.PENDING_APPROVAL.value,
        (PayRunStatus.PENDING_APPROVAL.value, PayRunAction.APPROVE.value): PayRunStatus.APPROVED.value,
        (PayRunStatus.APPROVED.value, PayRunAction.EXPORT.value): PayRunStatus.EXPORTED.value,
    }

    EXPORTABLE: ClassVar[frozenset[str]] = frozenset(
        {PayRunStatus.APPROVED.value, PayRunStatus.EXPORTED.value}
    )

    @classmethod
    def can_export(cls, status: str) -> bool:
        """Batch files may be generated (and regenerated) once approved."""
        return _value(status) in cls.EXPORTABLE
