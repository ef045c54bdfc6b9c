from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone, tzinfo
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Generic, Optional, TypeVar, Union
from uuid import UUID

from pydantic import ValidationError

from ..errors import (
    ConflictError,
    InvoiceAlreadyPaidError,
    LedgerError,
    NotFoundError,
    TransientError,
    ValidationFailed,
    is_retriable,
)
from ..models import Invoice, InvoiceStatus, User
from ..schemas.operations import (
    CreateInvoiceParams,
    GenerateReportParams,
    InvoiceFilter,
    ListInvoicesParams,
    LogExpenseParams,
    MarkInvoicePaidParams,
    OperationParams,
    OperationResult,
    ReportType,
)
from ..utils.formatting import format_money
from . import calculator
from .numbering import InvoiceNumberAllocator, default_allocator

if TYPE_CHECKING:
    from ..repositories import LedgerRepository

logger = logging.getLogger(__name__)

P = TypeVar("P", bound=OperationParams)
Clock = Callable[[], datetime]

GENERIC_FAILURE = "Sorry, there was an error processing your request. Please try again."

HELP_TEXT = (
    "Here's what I can do:\n"
    "• Create invoices: \"Invoice ABC Company R500 for website design\"\n"
    "• List invoices: \"Show my unpaid invoices\"\n"
    "• Mark invoices paid: \"INV-0003 has been paid\"\n"
    "• Log expenses: \"Spent R450 on fuel\"\n"
    "• Summaries: \"How did I do this month?\"\n"
    "• VAT: \"What is my VAT position this quarter?\"\n"
    "• Reports: \"Profit and loss for this year\""
)

_FILTER_STATUSES: dict[InvoiceFilter, Optional[tuple[InvoiceStatus, ...]]] = {
    InvoiceFilter.ALL: None,
    InvoiceFilter.PAID: (InvoiceStatus.PAID,),
    InvoiceFilter.UNPAID: (InvoiceStatus.DRAFT, InvoiceStatus.SENT, InvoiceStatus.OVERDUE),
    InvoiceFilter.DRAFT: (InvoiceStatus.DRAFT,),
    InvoiceFilter.SENT: (InvoiceStatus.SENT,),
    InvoiceFilter.OVERDUE: (InvoiceStatus.OVERDUE,),
    InvoiceFilter.CANCELLED: (InvoiceStatus.CANCELLED,),
}


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _money(value: Decimal) -> str:
    return str(calculator.round_money(value))


def _ensure_aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def parse_params(model: type[P], parameters: Union[Mapping[str, Any], OperationParams, None]) -> P:
    """Validate a loose parameter map into ``model``, raising ``ValidationFailed``."""
    if isinstance(parameters, model):
        return parameters
    if isinstance(parameters, OperationParams):
        parameters = parameters.model_dump()
    try:
        return model.model_validate(dict(parameters or {}))
    except ValidationError as exc:
        raise ValidationFailed(_describe_validation_error(exc)) from exc


def _describe_validation_error(exc: ValidationError) -> str:
    error = exc.errors()[0]
    field = ".".join(str(part) for part in error.get("loc", ()) if part != "__root__")
    message = error.get("msg", "is invalid").removeprefix("Value error, ")
    if error.get("type") == "missing":
        return f"Please include the {field.replace('_', ' ')}."
    if field:
        return f"Please check the {field.replace('_', ' ')}: {message}"
    return message


class OperationHandler(ABC, Generic[P]):
    """One financial operation.

    ``run`` raises domain errors so callers with their own retry policy can
    classify them. ``execute`` is the conversational entry point and always
    returns an ``OperationResult`` whose message is safe to show to the user.
    """

    name = "operation"
    params_model: type[P]

    def __init__(self, repository: "LedgerRepository", *, clock: Clock = utc_now) -> None:
        self.repository = repository
        self.clock = clock

    async def execute(
        self, user_id: UUID, parameters: Union[Mapping[str, Any], OperationParams, None]
    ) -> OperationResult:
        try:
            return await self.run(user_id, parameters)
        except ValidationFailed as exc:
            return OperationResult.failure(exc.user_message, error_code="validation")
        except NotFoundError as exc:
            logger.info("%s for user %s: %s", self.name, user_id, exc)
            return OperationResult.failure(exc.user_message, error_code="not_found")
        except ConflictError as exc:
            logger.info("%s for user %s rejected: %s", self.name, user_id, exc)
            return OperationResult.failure(exc.user_message, error_code="conflict")
        except LedgerError as exc:
            if is_retriable(exc):
                logger.warning("%s for user %s failed transiently: %s", self.name, user_id, exc)
                return OperationResult.failure(exc.user_message, error_code="transient")
            logger.exception("%s failed for user %s", self.name, user_id)
            return OperationResult.failure(exc.user_message, error_code="internal")
        except Exception as exc:
            if is_retriable(exc):
                logger.warning("%s for user %s failed transiently: %r", self.name, user_id, exc)
                return OperationResult.failure(TransientError.user_message, error_code="transient")
            logger.exception("%s failed for user %s", self.name, user_id)
            return OperationResult.failure(GENERIC_FAILURE, error_code="internal")

    async def run(
        self, user_id: UUID, parameters: Union[Mapping[str, Any], OperationParams, None]
    ) -> OperationResult:
        return await self.perform(user_id, parse_params(self.params_model, parameters))

    @abstractmethod
    async def perform(self, user_id: UUID, params: P) -> OperationResult:
        """Carry out the operation with validated parameters."""

    async def _require_user(self, user_id: UUID) -> User:
        user = await self.repository.get_user(user_id)
        if user is None:
            raise NotFoundError(
                f"User {user_id} not found",
                user_message="I couldn't find your account. Please sign up first.",
            )
        return user


class CreateInvoiceHandler(OperationHandler[CreateInvoiceParams]):
    name = "create_invoice"
    params_model = CreateInvoiceParams

    def __init__(
        self,
        repository: "LedgerRepository",
        *,
        allocator: InvoiceNumberAllocator = default_allocator,
        clock: Clock = utc_now,
    ) -> None:
        super().__init__(repository, clock=clock)
        self.allocator = allocator

    async def perform(self, user_id: UUID, params: CreateInvoiceParams) -> OperationResult:
        user = await self._require_user(user_id)
        # A collision rolls the session back and expires ``user``; only plain values
        # may be read from here on.
        currency = user.currency
        vat_rate = calculator.to_decimal(user.default_vat_rate)
        unit_price = calculator.net_unit_price(
            params.amount, vat_rate, vat_included=params.vat_included
        )
        due_date = _ensure_aware(self.clock()) + timedelta(days=params.due_in_days)

        async def create(invoice_number: str) -> Invoice:
            client = await self.repository.create_or_get_client(user_id, params.client_name)
            invoice = await self.repository.create_invoice(
                user_id=user_id,
                client_id=client.id,
                invoice_number=invoice_number,
                currency=currency,
                vat_included=params.vat_included,
                vat_rate=vat_rate,
                due_date=due_date,
            )
            await self.repository.create_invoice_item(
                invoice_id=invoice.id,
                description=params.description,
                quantity=1,
                unit_price=unit_price,
            )
            return invoice

        invoice = await self.allocator.allocate(self.repository, user_id, create)
        totals = calculator.split_vat(unit_price, vat_rate, vat_included=False).rounded()
        logger.info("Created invoice %s for user %s", invoice.invoice_number, user_id)

        return OperationResult.ok(
            f"✅ Invoice {invoice.invoice_number} created for {params.client_name} - "
            f"{format_money(totals.total, currency)} "
            f"(incl. {format_money(totals.vat, currency)} VAT), due {due_date:%d %b %Y}",
            {
                "invoice_id": str(invoice.id),
                "invoice_number": invoice.invoice_number,
                "client_name": params.client_name,
                "status": InvoiceStatus.DRAFT.value,
                "currency": currency,
                "vat_included": params.vat_included,
                "vat_rate": str(vat_rate),
                "subtotal": _money(totals.subtotal),
                "vat_amount": _money(totals.vat),
                "total": _money(totals.total),
                "due_date": due_date.isoformat(),
            },
        )


class LogExpenseHandler(OperationHandler[LogExpenseParams]):
    name = "log_expense"
    params_model = LogExpenseParams

    async def perform(self, user_id: UUID, params: LogExpenseParams) -> OperationResult:
        user = await self._require_user(user_id)
        vat_rate = calculator.to_decimal(user.default_vat_rate)
        # VAT is always inside an expense amount.
        vat_amount = calculator.round_money(
            calculator.split_vat(params.amount, vat_rate, vat_included=True).vat
        )
        spent_at = _ensure_aware(params.date) if params.date else _ensure_aware(self.clock())
        category = params.category.strip().title()

        async with self.repository.unit_of_work():
            expense = await self.repository.create_expense(
                user_id=user_id,
                description=params.description,
                amount=calculator.round_money(params.amount),
                currency=user.currency,
                category=category,
                date=spent_at,
                vat_amount=vat_amount,
            )
        logger.info("Logged expense %s for user %s", expense.id, user_id)

        return OperationResult.ok(
            f"✅ Expense logged: {params.description} - {format_money(params.amount, user.currency)} "
            f"({category}, VAT {format_money(vat_amount, user.currency)})",
            {
                "expense_id": str(expense.id),
                "description": params.description,
                "amount": _money(params.amount),
                "currency": user.currency,
                "category": category,
                "vat_amount": _money(vat_amount),
                "date": spent_at.isoformat(),
            },
        )


class MarkInvoicePaidHandler(OperationHandler[MarkInvoicePaidParams]):
    name = "mark_invoice_paid"
    params_model = MarkInvoicePaidParams

    async def perform(self, user_id: UUID, params: MarkInvoicePaidParams) -> OperationResult:
        if params.invoice_id is not None:
            invoice = await self.repository.get_invoice(params.invoice_id, user_id)
        else:
            invoice = await self.repository.find_invoice_by_number(user_id, params.invoice_number)
        if invoice is None:
            label = params.invoice_number or str(params.invoice_id)
            raise NotFoundError(
                f"Invoice {label} not found for user {user_id}",
                user_message=f"I couldn't find invoice {label}.",
            )
        if invoice.status is InvoiceStatus.PAID:
            raise InvoiceAlreadyPaidError(
                f"Invoice {invoice.invoice_number} is already paid",
                user_message=f"Invoice {invoice.invoice_number} has already been marked as paid.",
            )
        if invoice.status is InvoiceStatus.CANCELLED:
            raise ConflictError(
                f"Invoice {invoice.invoice_number} is cancelled",
                user_message=f"Invoice {invoice.invoice_number} was cancelled and can't be paid.",
            )
        if not invoice.items:
            raise ConflictError(f"Invoice {invoice.invoice_number} has no line items")

        amount = calculator.invoice_totals(invoice).rounded().total
        paid_at = _ensure_aware(self.clock())
        async with self.repository.unit_of_work():
            await self.repository.update_invoice_status(
                invoice.id, user_id, InvoiceStatus.PAID, paid_at=paid_at
            )
            payment = await self.repository.create_payment(
                invoice_id=invoice.id,
                amount=amount,
                method=params.method,
                paid_at=paid_at,
                reference=params.reference,
            )
        logger.info("Invoice %s marked paid for user %s", invoice.invoice_number, user_id)

        return OperationResult.ok(
            f"💰 Invoice {invoice.invoice_number} marked as paid - "
            f"{format_money(amount, invoice.currency)}",
            {
                "invoice_id": str(invoice.id),
                "invoice_number": invoice.invoice_number,
                "status": InvoiceStatus.PAID.value,
                "payment_id": str(payment.id),
                "amount": _money(amount),
                "method": params.method,
                "paid_at": paid_at.isoformat(),
            },
        )


class GenerateReportHandler(OperationHandler[GenerateReportParams]):
    name = "generate_report"
    params_model = GenerateReportParams

    def __init__(
        self,
        repository: "LedgerRepository",
        *,
        business_timezone: tzinfo = timezone.utc,
        clock: Clock = utc_now,
    ) -> None:
        super().__init__(repository, clock=clock)
        self.business_timezone = business_timezone

    async def perform(self, user_id: UUID, params: GenerateReportParams) -> OperationResult:
        user = await self._require_user(user_id)
        now = _ensure_aware(self.clock()).astimezone(self.business_timezone)
        start, end = calculator.resolve_period(params.period, now)
        invoices = await self.repository.query_invoices_paid_in_range(user_id, start, end)
        expenses = await self.repository.query_expenses_in_range(user_id, start, end)

        data: dict[str, Any] = {
            "report_type": params.report_type.value,
            "period": params.period.value,
            "start_date": start.isoformat(),
            "end_date": end.isoformat(),
            "currency": user.currency,
        }
        title = params.period.value.capitalize()
        currency = user.currency

        if params.report_type is ReportType.VAT_REPORT:
            report = calculator.vat_report(invoices, expenses)
            data.update(
                vat_collected=_money(report.collected),
                vat_paid=_money(report.paid),
                vat_owed=_money(report.owed),
                refund_due=report.refund_due,
                invoice_count=report.invoice_count,
                expense_count=report.expense_count,
            )
            position = "refund due" if report.refund_due else "owed to SARS"
            message = (
                f"🧾 {title} VAT Report: Collected {format_money(report.collected, currency)}, "
                f"Paid {format_money(report.paid, currency)}, "
                f"Net {format_money(abs(report.owed), currency)} {position}"
            )
            return OperationResult.ok(message, data)

        summary = calculator.summarise(invoices, expenses)
        data.update(_summary_data(summary))
        if params.report_type is ReportType.PROFIT_LOSS:
            data["revenue_by_month"] = _money_map(calculator.revenue_by_month(invoices).items())
            data["expenses_by_category"] = _money_map(
                calculator.expenses_by_category(expenses).items()
            )
            heading = f"📈 {title} Profit & Loss"
        else:
            heading = f"📊 {title} Summary"

        message = (
            f"{heading}: Revenue {format_money(summary.revenue, currency)}, "
            f"Expenses {format_money(summary.expenses, currency)}, "
            f"Net Profit {format_money(summary.net_profit, currency)} "
            f"({calculator.round_money(summary.margin)}% margin)"
        )
        return OperationResult.ok(message, data)


def _summary_data(summary: calculator.FinancialSummary) -> dict[str, Any]:
    return {
        "total_revenue": _money(summary.revenue),
        "total_expenses": _money(summary.expenses),
        "net_profit": _money(summary.net_profit),
        "profit_margin": _money(summary.margin),
        "invoice_count": summary.invoice_count,
        "expense_count": summary.expense_count,
    }


def _money_map(items: Iterable[tuple[str, Decimal]]) -> dict[str, str]:
    return {key: _money(value) for key, value in items}


class ListInvoicesHandler(OperationHandler[ListInvoicesParams]):
    name = "list_invoices"
    params_model = ListInvoicesParams

    async def perform(self, user_id: UUID, params: ListInvoicesParams) -> OperationResult:
        invoices = await self.repository.list_invoices(
            user_id, statuses=_FILTER_STATUSES[params.status], limit=params.limit
        )
        rows = []
        lines = []
        for invoice in invoices:
            totals = calculator.invoice_totals(invoice).rounded()
            client_name = invoice.client.name if invoice.client else ""
            rows.append(
                {
                    "invoice_id": str(invoice.id),
                    "invoice_number": invoice.invoice_number,
                    "client_name": client_name,
                    "status": invoice.status.value,
                    "total": _money(totals.total),
                    "currency": invoice.currency,
                    "due_date": invoice.due_date.isoformat() if invoice.due_date else None,
                }
            )
            lines.append(
                f"{invoice.invoice_number} · {client_name} · "
                f"{format_money(totals.total, invoice.currency)} · {invoice.status.value}"
            )

        label = "" if params.status is InvoiceFilter.ALL else f"{params.status.value} "
        if not rows:
            return OperationResult.ok(f"You have no {label}invoices yet.", {"invoices": []})
        message = f"📄 Your {label}invoices:\n" + "\n".join(lines)
        return OperationResult.ok(message, {"invoices": rows})


class HelpHandler(OperationHandler[OperationParams]):
    name = "help"
    params_model = OperationParams

    async def perform(self, user_id: UUID, params: OperationParams) -> OperationResult:
        return OperationResult.ok(HELP_TEXT)


@dataclass
class OperationHandlers:
    repository: "LedgerRepository"
    create_invoice: CreateInvoiceHandler
    log_expense: LogExpenseHandler
    mark_invoice_paid: MarkInvoicePaidHandler
    generate_report: GenerateReportHandler
    list_invoices: ListInvoicesHandler
    help: HelpHandler


def build_operation_handlers(
    repository: "LedgerRepository",
    *,
    allocator: InvoiceNumberAllocator = default_allocator,
    business_timezone: tzinfo = timezone.utc,
    clock: Clock = utc_now,
) -> OperationHandlers:
    return OperationHandlers(
        repository=repository,
        create_invoice=CreateInvoiceHandler(repository, allocator=allocator, clock=clock),
        log_expense=LogExpenseHandler(repository, clock=clock),
        mark_invoice_paid=MarkInvoicePaidHandler(repository, clock=clock),
        generate_report=GenerateReportHandler(
            repository, business_timezone=business_timezone, clock=clock
        ),
        list_invoices=ListInvoicesHandler(repository, clock=clock),
        help=HelpHandler(repository, clock=clock),
    )
