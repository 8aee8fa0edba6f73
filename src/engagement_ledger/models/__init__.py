"""ORM models."""

from engagement_ledger.models.audit import AuditEvent, FxRateLog
from engagement_ledger.models.base import Base, TimestampMixin, utcnow
from engagement_ledger.models.billing import Invoice, InvoiceDraft, InvoiceSequence
from engagement_ledger.models.payroll import ContractorPayLine, ContractorPayRate, ContractorPayRun
from engagement_ledger.models.pricing import RateCard, RateLine
from engagement_ledger.models.project import Project, ProjectAssignment, ProjectJob, TimeEntry
from engagement_ledger.models.proposal import Approval, ClientRequest, Job, JobEstimate, Proposal
from engagement_ledger.models.tenant import AppUser, Tenant

__all__ = [
    "AppUser",
    "Approval",
    "AuditEvent",
    "Base",
    "ClientRequest",
    "ContractorPayLine",
    "ContractorPayRate",
    "ContractorPayRun",
    "FxRateLog",
    "Invoice",
    "InvoiceDraft",
    "InvoiceSequence",
    "Job",
    "JobEstimate",
    "Project",
    "ProjectAssignment",
    "ProjectJob",
    "Proposal",
    "RateCard",
    "RateLine",
    "Tenant",
    "TimeEntry",
    "TimestampMixin",
    "utcnow",
]
