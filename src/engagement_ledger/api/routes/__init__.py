"""API routes."""

from engagement_ledger.api.routes.health import router as health_router
from engagement_ledger.api.routes.invoices import router as invoices_router
from engagement_ledger.api.routes.payroll import router as payroll_router
from engagement_ledger.api.routes.proposals import router as proposals_router
from engagement_ledger.api.routes.rate_cards import router as rate_cards_router
from engagement_ledger.api.routes.time_entries import router as time_entries_router

__all__ = [
    "health_router",
    "invoices_router",
    "payroll_router",
    "proposals_router",
    "rate_cards_router",
    "time_entries_router",
]
