"""Pricing and rate calculation."""

from engagement_ledger.calculators.pricing import (
    EstimateRequest,
    JobRequest,
    PricedEstimate,
    PricedJob,
    PricedProposal,
    PricingEngine,
)
from engagement_ledger.calculators.rate_resolver import (
    RATE_MATCHERS,
    RateMatcher,
    RateResolver,
    ResolvedRate,
    normalize_role,
)

__all__ = [
    "EstimateRequest",
    "JobRequest",
    "PricedEstimate",
    "PricedJob",
    "PricedProposal",
    "PricingEngine",
    "RATE_MATCHERS",
    "RateMatcher",
    "RateResolver",
    "ResolvedRate",
    "normalize_role",
]
