"""Payment batch export for approved contractor pay runs."""

from __future__ import annotations

import csv
import io
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Mapping, Sequence
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from engagement_ledger.calculators.money import quantize_money
from engagement_ledger.context import ActorContext
from engagement_ledger.errors import InvalidTransitionError
from engagement_ledger.models import AppUser, ContractorPayLine, ContractorPayRun
from engagement_ledger.services.audit_service import AuditAction, AuditRecorder
from engagement_ledger.services.payroll_service import PayrollService
from engagement_ledger.services.state_machine import PayRunStateMachine, PayRunStatus

logger = logging.getLogger(__name__)

CONTENT_TYPE = "text/csv"

BATCH_HEADER = (
    "recipientName",
    "recipientEmail",
    "sourceCurrency",
    "targetCurrency",
    "amountCurrency",
    "amount",
    "reference",
    "recipientAccountNumber",
    "recipientBankCode",
    "recipientType",
)


@dataclass(frozen=True)
class PaymentLine:
    """One row of the batch file."""

    recipient_name: str
    recipient_email: str
    source_currency: str
    target_currency: str
    amount_currency: str
    amount: Decimal
    reference: str
    recipient_account_number: str = ""
    recipient_bank_code: str = ""
    recipient_type: str = "PERSON"

    def as_row(self) -> list[str]:
        return [
            self.recipient_name,
            self.recipient_email,
            self.source_currency,
            self.target_currency,
            self.amount_currency,
            f"{quantize_money(self.amount):.2f}",
            self.reference,
            self.recipient_account_number,
            self.recipient_bank_code,
            self.recipient_type or "PERSON",
        ]


@dataclass(frozen=True)
class BatchExport:
    content: bytes
    filename: str
    content_type: str
    line_count: int


def short_id(run_id: UUID | str) -> str:
    """Last eight characters of the run id."""
    return str(run_id)[-8:]


def build_payment_lines(
    run: ContractorPayRun,
    lines: Iterable[ContractorPayLine],
    users: Mapping[UUID, AppUser],
) -> list[PaymentLine]:
    """Map pay lines to batch rows, sorted by recipient name then user id."""
    reference = f"PAY-{short_id(run.pay_run_id)}"
    keyed: list[tuple[str, str, PaymentLine]] = []
    for line in lines:
        user = users.get(line.user_id)
        name = user.full_name if user is not None else str(line.user_id)
        payment = PaymentLine(
            recipient_name=name,
            recipient_email=user.email if user is not None else "",
            source_currency=run.base_currency,
            target_currency=line.currency,
            amount_currency=line.currency,
            amount=line.total_amount,
            reference=reference,
        )
        keyed.append((name, str(line.user_id), payment))
    keyed.sort(key=lambda item: (item[0], item[1]))
    return [payment for _, _, payment in keyed]


def render_csv(payment_lines: Sequence[PaymentLine]) -> str:
    """Render the header and rows with standard CSV quoting."""
    output = io.StringIO()
    writer = csv.writer(output, lineterminator="\n")
    writer.writerow(BATCH_HEADER)
    for payment in payment_lines:
        writer.writerow(payment.as_row())
    return output.getvalue()


class BatchExportService:
    """Generates the payment batch file for a pay run.

    Export may be repeated while the run is APPROVED or EXPORTED; the file
    content depends only on the stored pay lines.
    """

    def __init__(self, session: AsyncSession):
        self.session = session
        self.payroll = PayrollService(session)
        self.audit = AuditRecorder(session)

    async def export_run(
        self,
        ctx: ActorContext,
        pay_run_id: UUID,
        mark_exported: bool = False,
    ) -> BatchExport:
        """Build the batch file for an approved run.

        Raises:
            NotFoundError: If the run does not belong to the tenant
            InvalidTransitionError: If the run is not APPROVED or EXPORTED
        """
        run = await self.payroll.get_run(ctx, pay_run_id)
        if not PayRunStateMachine.can_export(run.status):
            raise InvalidTransitionError(
                run.status, "export", "pay run must be approved before generating a batch file"
            )

        user_ids = [line.user_id for line in run.lines]
        users: dict[UUID, AppUser] = {}
        if user_ids:
            result = await self.session.execute(
                select(AppUser).where(AppUser.user_id.in_(user_ids))
            )
            users = {user.user_id: user for user in result.scalars().all()}

        payment_lines = build_payment_lines(run, run.lines, users)
        content = render_csv(payment_lines).encode("utf-8")
        filename = f"wise-batch-{short_id(run.pay_run_id)}.csv"

        await self.audit.record(
            ctx,
            "BatchFile",
            run.pay_run_id,
            AuditAction.CREATE,
            None,
            {
                "pay_run_id": str(run.pay_run_id),
                "format": "CSV",
                "filename": filename,
                "line_count": len(payment_lines),
            },
        )

        if mark_exported and run.status == PayRunStatus.APPROVED.value:
            await self.payroll.mark_exported(ctx, pay_run_id)

        logger.info("Exported %d payment lines for pay run %s", len(payment_lines), pay_run_id)
        return BatchExport(
            content=content,
            filename=filename,
            content_type=CONTENT_TYPE,
            line_count=len(payment_lines),
        )
