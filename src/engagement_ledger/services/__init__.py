"""Engagement ledger services."""

from engagement_ledger.services.audit_service import AuditRecorder
from engagement_ledger.services.batch_export import BatchExport, BatchExportService
from engagement_ledger.services.fx_service import FxQuote, FxRateCache, FxSource, HttpFxRateSource
from engagement_ledger.services.invoice_service import InvoiceService
from engagement_ledger.services.payroll_service import PayrollService
from engagement_ledger.services.proposal_service import DecisionResult, ProposalService
from engagement_ledger.services.provisioning_service import ProjectProvisioner
from engagement_ledger.services.rate_card_service import RateCardService
from engagement_ledger.services.time_entry_service import TimeEntryService

__all__ = [
    "AuditRecorder",
    "BatchExport",
    "BatchExportService",
    "DecisionResult",
    "FxQuote",
    "FxRateCache",
    "FxSource",
    "HttpFxRateSource",
    "InvoiceService",
    "PayrollService",
    "ProjectProvisioner",
    "ProposalService",
    "RateCardService",
    "TimeEntryService",
]
