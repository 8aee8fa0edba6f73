"""Engagement ledger: proposals, project budgets, invoicing and contractor payroll."""

__version__ = "0.1.0"
