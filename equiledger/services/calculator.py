"""Pure financial arithmetic: VAT splits, invoice totals, period boundaries and reports.

Everything here works on :class:`~decimal.Decimal` at full precision. Rounding to cents
happens only through :func:`round_money`, which callers apply at the point a figure is
shown or persisted.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Protocol

CENT = Decimal("0.01")
PRICE_QUANTUM = Decimal("0.0001")
HUNDRED = Decimal("100")
DEFAULT_VAT_RATE = Decimal("0.15")
INVOICE_NUMBER_PREFIX = "INV-"
UNCATEGORISED = "Other"


class Period(str, Enum):
    MONTH = "month"
    QUARTER = "quarter"
    YEAR = "year"


class LineItemLike(Protocol):
    quantity: int
    unit_price: Decimal


class InvoiceLike(Protocol):
    vat_rate: Decimal
    paid_at: datetime | None
    items: list


class ExpenseLike(Protocol):
    amount: Decimal
    vat_amount: Decimal
    category: str | None


@dataclass(frozen=True)
class VatSplit:
    subtotal: Decimal
    vat: Decimal
    total: Decimal

    def rounded(self) -> "VatSplit":
        """Cent figures where the VAT is whatever makes subtotal and VAT add up to the total."""
        subtotal = round_money(self.subtotal)
        total = round_money(self.total)
        return VatSplit(subtotal, total - subtotal, total)


@dataclass(frozen=True)
class FinancialSummary:
    revenue: Decimal
    expenses: Decimal
    net_profit: Decimal
    margin: Decimal
    invoice_count: int
    expense_count: int


@dataclass(frozen=True)
class VatReport:
    collected: Decimal
    paid: Decimal
    owed: Decimal
    invoice_count: int
    expense_count: int

    @property
    def refund_due(self) -> bool:
        return self.owed < 0


def to_decimal(value: Decimal | int | float | str) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def round_money(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def round_price(value: Decimal) -> Decimal:
    return value.quantize(PRICE_QUANTUM, rounding=ROUND_HALF_UP)


def split_vat(amount: Decimal, vat_rate: Decimal = DEFAULT_VAT_RATE, *, vat_included: bool) -> VatSplit:
    """Split an amount into subtotal and VAT under the given convention."""
    amount = to_decimal(amount)
    vat_rate = to_decimal(vat_rate)
    if vat_included:
        subtotal = amount / (1 + vat_rate)
        return VatSplit(subtotal=subtotal, vat=amount - subtotal, total=amount)
    vat = amount * vat_rate
    return VatSplit(subtotal=amount, vat=vat, total=amount + vat)


def net_unit_price(amount: Decimal, vat_rate: Decimal, *, vat_included: bool) -> Decimal:
    """VAT-exclusive price for an amount entered under either convention.

    Four decimal places keep ``round_money(price * (1 + rate))`` equal to an entered
    inclusive amount for any rate below 1.
    """
    return round_price(split_vat(amount, vat_rate, vat_included=vat_included).subtotal)


def line_total(item: LineItemLike) -> Decimal:
    return Decimal(item.quantity) * to_decimal(item.unit_price)


def invoice_subtotal(items: Iterable[LineItemLike]) -> Decimal:
    return sum((line_total(item) for item in items), Decimal("0"))


def invoice_totals(invoice: InvoiceLike) -> VatSplit:
    """Totals of an invoice, recomputed from its items and its own VAT rate snapshot.

    Line items are priced VAT-exclusive at four decimal places, so VAT is added on top
    of their sum and the rounded total matches what was invoiced under either convention.
    """
    return split_vat(invoice_subtotal(invoice.items), invoice.vat_rate, vat_included=False)


def format_invoice_number(sequence: int) -> str:
    if sequence < 1:
        raise ValueError("Invoice sequence starts at 1.")
    return f"{INVOICE_NUMBER_PREFIX}{sequence:04d}"


def next_invoice_number(existing_count: int) -> str:
    return format_invoice_number(existing_count + 1)


def resolve_period(period: Period | str, now: datetime) -> tuple[datetime, datetime]:
    """Start of the month, quarter or year containing ``now``, through ``now``.

    The start keeps ``now``'s timezone so every caller agrees on the boundary.
    """
    period = Period(period)
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
    if period is Period.MONTH:
        start = midnight.replace(day=1)
    elif period is Period.QUARTER:
        first_month = (now.month - 1) // 3 * 3 + 1
        start = midnight.replace(month=first_month, day=1)
    else:
        start = midnight.replace(month=1, day=1)
    return start, now


def profit_margin(revenue: Decimal, net_profit: Decimal) -> Decimal:
    if revenue == 0:
        return Decimal("0")
    return net_profit / revenue * HUNDRED


def summarise(paid_invoices: Iterable[InvoiceLike], expenses: Iterable[ExpenseLike]) -> FinancialSummary:
    invoices = list(paid_invoices)
    expense_list = list(expenses)
    revenue = sum((invoice_subtotal(invoice.items) for invoice in invoices), Decimal("0"))
    spent = sum((to_decimal(expense.amount) for expense in expense_list), Decimal("0"))
    net_profit = revenue - spent
    return FinancialSummary(
        revenue=revenue,
        expenses=spent,
        net_profit=net_profit,
        margin=profit_margin(revenue, net_profit),
        invoice_count=len(invoices),
        expense_count=len(expense_list),
    )


def vat_report(paid_invoices: Iterable[InvoiceLike], expenses: Iterable[ExpenseLike]) -> VatReport:
    invoices = list(paid_invoices)
    expense_list = list(expenses)
    collected = sum((invoice_totals(invoice).vat for invoice in invoices), Decimal("0"))
    paid = sum((to_decimal(expense.vat_amount or 0) for expense in expense_list), Decimal("0"))
    return VatReport(
        collected=collected,
        paid=paid,
        owed=collected - paid,
        invoice_count=len(invoices),
        expense_count=len(expense_list),
    )


def expenses_by_category(expenses: Iterable[ExpenseLike]) -> dict[str, Decimal]:
    totals: dict[str, Decimal] = defaultdict(lambda: Decimal("0"))
    for expense in expenses:
        totals[expense.category or UNCATEGORISED] += to_decimal(expense.amount)
    return dict(totals)


def revenue_by_month(paid_invoices: Iterable[InvoiceLike]) -> dict[str, Decimal]:
    totals: dict[str, Decimal] = defaultdict(lambda: Decimal("0"))
    for invoice in paid_invoices:
        if invoice.paid_at is None:
            continue
        totals[invoice.paid_at.strftime("%Y-%m")] += invoice_subtotal(invoice.items)
    return dict(sorted(totals.items()))
