from __future__ import annotations

from decimal import Decimal
from typing import Annotated, Any, Literal, Optional, Union
from uuid import UUID

from pydantic import BaseModel, Field

from ..services.calculator import Period
from .operations import ReportType


class CreateInvoiceStep(BaseModel):
    type: Literal["create_invoice"] = "create_invoice"
    client_name: str
    amount: Decimal
    description: str
    due_in_days: int = 30
    vat_included: bool = True


class LogExpenseStep(BaseModel):
    type: Literal["log_expense"] = "log_expense"
    amount: Decimal
    description: str
    category: str
    date: Optional[str] = None


class GenerateReportStep(BaseModel):
    type: Literal["generate_report"] = "generate_report"
    period: Period = Period.MONTH
    report_type: ReportType = ReportType.FINANCIAL_SUMMARY


WorkflowStep = Annotated[
    Union[CreateInvoiceStep, LogExpenseStep, GenerateReportStep],
    Field(discriminator="type"),
]


class WorkflowRequest(BaseModel):
    user_id: UUID
    steps: list[WorkflowStep] = Field(min_length=1, max_length=20)


class WorkflowRead(BaseModel):
    success: bool
    status: str
    completed_steps: int
    results: dict[int, dict[str, Any]]
    errors: dict[int, str]
    step_states: list[str]
