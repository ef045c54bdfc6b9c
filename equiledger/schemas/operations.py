from __future__ import annotations

import re
from datetime import date, datetime, time
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from uuid import UUID

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)

from ..services.calculator import Period
from ..utils.formatting import parse_amount_token

_INVOICE_REF = re.compile(r"^(?:#|INV[-\s]?)?0*(\d+)$", re.IGNORECASE)


class ReportType(str, Enum):
    FINANCIAL_SUMMARY = "financial_summary"
    VAT_REPORT = "vat_report"
    PROFIT_LOSS = "profit_loss"


class InvoiceFilter(str, Enum):
    ALL = "all"
    PAID = "paid"
    UNPAID = "unpaid"
    DRAFT = "draft"
    SENT = "sent"
    OVERDUE = "overdue"
    CANCELLED = "cancelled"


def _coerce_amount(value: Any) -> Any:
    if isinstance(value, str):
        try:
            return parse_amount_token(value)
        except ValueError:
            return value
    return value


class OperationParams(BaseModel):
    """Base for per-operation parameter sets converted from the resolver's loose map."""

    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True, extra="ignore")


class CreateInvoiceParams(OperationParams):
    client_name: str = Field(
        min_length=1,
        max_length=255,
        validation_alias=AliasChoices("client_name", "clientName", "client"),
    )
    amount: Decimal = Field(gt=0, max_digits=12, decimal_places=2)
    description: str = Field(min_length=1, max_length=512)
    due_in_days: int = Field(
        default=30, gt=0, le=365, validation_alias=AliasChoices("due_in_days", "dueInDays")
    )
    vat_included: bool = Field(
        default=True, validation_alias=AliasChoices("vat_included", "vatIncluded")
    )

    _amount = field_validator("amount", mode="before")(_coerce_amount)


class LogExpenseParams(OperationParams):
    amount: Decimal = Field(gt=0, max_digits=12, decimal_places=2)
    description: str = Field(min_length=1, max_length=512)
    category: str = Field(min_length=1, max_length=64)
    date: Optional[datetime] = None

    _amount = field_validator("amount", mode="before")(_coerce_amount)

    @field_validator("date", mode="before")
    @classmethod
    def _accept_plain_dates(cls, value: Any) -> Any:
        if isinstance(value, str) and len(value.strip()) == 10:
            value = date.fromisoformat(value.strip())
        if isinstance(value, date) and not isinstance(value, datetime):
            return datetime.combine(value, time(hour=12))
        return value


class MarkInvoicePaidParams(OperationParams):
    invoice_id: Optional[UUID] = Field(
        default=None, validation_alias=AliasChoices("invoice_id", "invoiceId", "id")
    )
    invoice_number: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("invoice_number", "invoiceNumber", "number", "invoice"),
    )
    method: str = Field(default="Manual", min_length=1, max_length=32)
    reference: Optional[str] = Field(default=None, max_length=128)

    @field_validator("invoice_number", mode="before")
    @classmethod
    def _normalise_number(cls, value: Any) -> Any:
        if value is None:
            return None
        match = _INVOICE_REF.match(str(value).strip())
        if not match:
            raise ValueError("Invoice numbers look like INV-0001.")
        return f"INV-{int(match.group(1)):04d}"

    @model_validator(mode="after")
    def _require_reference(self) -> "MarkInvoicePaidParams":
        if self.invoice_id is None and self.invoice_number is None:
            raise ValueError("Tell me which invoice was paid, e.g. INV-0001.")
        return self


class GenerateReportParams(OperationParams):
    report_type: ReportType = Field(
        default=ReportType.FINANCIAL_SUMMARY,
        validation_alias=AliasChoices("report_type", "reportType", "type"),
    )
    period: Period = Period.MONTH

    @field_validator("report_type", "period", mode="before")
    @classmethod
    def _lowercase(cls, value: Any) -> Any:
        return value.strip().lower() if isinstance(value, str) else value


class ListInvoicesParams(OperationParams):
    status: InvoiceFilter = InvoiceFilter.ALL
    limit: int = Field(default=10, ge=1, le=50)

    @field_validator("status", mode="before")
    @classmethod
    def _lowercase(cls, value: Any) -> Any:
        return value.strip().lower() if isinstance(value, str) else value


class OperationResult(BaseModel):
    """Outcome of one operation; ``message`` is always safe to show to the user."""

    success: bool
    message: str
    data: dict[str, Any] = Field(default_factory=dict)
    error_code: Optional[str] = None

    @classmethod
    def ok(cls, message: str, data: Optional[dict[str, Any]] = None) -> "OperationResult":
        return cls(success=True, message=message, data=data or {})

    @classmethod
    def failure(cls, message: str, *, error_code: str) -> "OperationResult":
        return cls(success=False, message=message, error_code=error_code)
