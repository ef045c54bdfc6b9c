from __future__ import annotations

from decimal import Decimal
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from ..services.calculator import Period
from .intents import Intent
from .operations import InvoiceFilter, ReportType


class ChatRequest(BaseModel):
    user_id: UUID
    message: str = Field(min_length=1, max_length=1000)


class ChatReply(BaseModel):
    intent: Intent
    confidence: float
    success: bool
    message: str
    data: dict[str, Any] = Field(default_factory=dict)


class InvoiceCreateRequest(BaseModel):
    user_id: UUID
    client_name: str
    amount: Decimal
    description: str
    due_in_days: int = 30
    vat_included: bool = True


class InvoiceListQuery(BaseModel):
    status: InvoiceFilter = InvoiceFilter.ALL
    limit: int = Field(default=10, ge=1, le=50)


class MarkPaidRequest(BaseModel):
    user_id: UUID
    method: str = "Manual"
    reference: Optional[str] = None


class ExpenseCreateRequest(BaseModel):
    user_id: UUID
    amount: Decimal
    description: str
    category: str
    date: Optional[str] = None


class ReportRequest(BaseModel):
    user_id: UUID
    period: Period = Period.MONTH
    report_type: ReportType = ReportType.FINANCIAL_SUMMARY


class OperationResponse(BaseModel):
    success: bool
    message: str
    data: dict[str, Any] = Field(default_factory=dict)
