"""FX rate cache backed by the append-only rate log."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Callable, Mapping, Protocol
from uuid import UUID, uuid4

import httpx
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from engagement_ledger.calculators.money import to_decimal
from engagement_ledger.config import get_settings
from engagement_ledger.errors import RateSourceUnreachableError, RateUnavailableError
from engagement_ledger.models import FxRateLog, utcnow

logger = logging.getLogger(__name__)

SOURCE_NAME = "ExchangeRate-API"


class FxSource(str, Enum):
    IDENTITY = "identity"
    CACHED = "cached"
    LIVE = "live"


@dataclass(frozen=True)
class FxQuote:
    """Rate for converting one unit of from_currency into to_currency."""

    from_currency: str
    to_currency: str
    rate: Decimal
    source: FxSource
    fetched_at: datetime


class FxRateSource(Protocol):
    """Anything that can return the full rate map for a base currency."""

    name: str

    async def fetch_rates(self, base_currency: str) -> Mapping[str, Decimal]: ...


class HttpFxRateSource:
    """Rate source for `{base_url}/{BASE}` endpoints returning {"rates": {...}}."""

    name = SOURCE_NAME

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        settings = get_settings()
        self.base_url = (base_url or settings.fx_api_url).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.fx_timeout_seconds
        self.transport = transport

    async def fetch_rates(self, base_currency: str) -> dict[str, Decimal]:
        """Fetch all rates for base_currency.

        Raises:
            RateSourceUnreachableError: On transport errors, timeouts, non-2xx
                responses or an unreadable body
        """
        url = f"{self.base_url}/{base_currency}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                resp = await client.get(url)
                resp.raise_for_status()
                payload = resp.json()
        except httpx.HTTPError as exc:
            logger.error("FX rate fetch for %s failed: %s", base_currency, exc)
            raise RateSourceUnreachableError(
                f"FX rate source unreachable for base {base_currency}",
                base_currency=base_currency,
            ) from exc
        except ValueError as exc:
            raise RateSourceUnreachableError(
                f"FX rate source returned an unreadable body for base {base_currency}",
                base_currency=base_currency,
            ) from exc

        rates = payload.get("rates") if isinstance(payload, dict) else None
        if not isinstance(rates, dict):
            raise RateSourceUnreachableError(
                f"FX rate source response has no rates for base {base_currency}",
                base_currency=base_currency,
            )
        return _decimal_rates(rates)


def _decimal_rates(rates: Mapping[str, object]) -> dict[str, Decimal]:
    parsed: dict[str, Decimal] = {}
    for currency, value in rates.items():
        try:
            parsed[currency.upper()] = to_decimal(value)
        except (ValueError, InvalidOperation):
            logger.warning("Ignoring non-numeric FX rate %r for %s", value, currency)
    return parsed


class FxRateCache:
    """Answers rate lookups from recent log entries, fetching when stale.

    Every fetch is appended to FxRateLog; entries are never rewritten, so
    the log doubles as the record of which rates were in effect when.
    """

    def __init__(
        self,
        session: AsyncSession,
        source: FxRateSource | None = None,
        clock: Callable[[], datetime] = utcnow,
        max_age_minutes: int | None = None,
    ):
        self.session = session
        self.source = source or HttpFxRateSource()
        self.clock = clock
        self.max_age_minutes = (
            max_age_minutes if max_age_minutes is not None else get_settings().fx_max_age_minutes
        )

    async def get_rate(
        self,
        tenant_id: UUID,
        from_currency: str,
        to_currency: str,
        max_age_minutes: int | None = None,
    ) -> FxQuote:
        """Rate from from_currency to to_currency.

        Raises:
            RateUnavailableError: If the rate set lacks to_currency
            RateSourceUnreachableError: If a fetch was needed and failed
        """
        from_currency = from_currency.upper()
        to_currency = to_currency.upper()
        now = self.clock()

        if from_currency == to_currency:
            return FxQuote(from_currency, to_currency, Decimal("1"), FxSource.IDENTITY, now)

        max_age = max_age_minutes if max_age_minutes is not None else self.max_age_minutes
        cutoff = now - timedelta(minutes=max_age)
        cached = await self.session.scalar(
            select(FxRateLog)
            .where(
                FxRateLog.tenant_id == tenant_id,
                FxRateLog.base_currency == from_currency,
                FxRateLog.fetched_at >= cutoff,
            )
            .order_by(FxRateLog.fetched_at.desc())
            .limit(1)
        )
        if cached is not None and to_currency in cached.rates:
            return FxQuote(
                from_currency,
                to_currency,
                to_decimal(cached.rates[to_currency]),
                FxSource.CACHED,
                cached.fetched_at,
            )

        rates = await self.source.fetch_rates(from_currency)
        log = FxRateLog(
            fx_rate_log_id=uuid4(),
            tenant_id=tenant_id,
            source=getattr(self.source, "name", SOURCE_NAME),
            base_currency=from_currency,
            rates={currency: str(rate) for currency, rate in rates.items()},
            fetched_at=now,
        )
        self.session.add(log)
        await self.session.flush()
        logger.info(
            "Fetched %d FX rates for base %s (tenant %s)", len(rates), from_currency, tenant_id
        )

        if to_currency not in rates:
            raise RateUnavailableError(from_currency, to_currency)
        return FxQuote(from_currency, to_currency, rates[to_currency], FxSource.LIVE, now)
