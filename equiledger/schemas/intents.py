from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class Intent(str, Enum):
    CREATE_INVOICE = "CREATE_INVOICE"
    LIST_INVOICES = "LIST_INVOICES"
    UPDATE_INVOICE = "UPDATE_INVOICE"
    LOG_EXPENSE = "LOG_EXPENSE"
    FINANCIAL_SUMMARY = "FINANCIAL_SUMMARY"
    COMPLIANCE_CHECK = "COMPLIANCE_CHECK"
    SET_REMINDER = "SET_REMINDER"
    GENERATE_REPORT = "GENERATE_REPORT"
    HELP = "HELP"
    GREETING = "GREETING"


class IntentResult(BaseModel):
    """Structured reading of one free-text message."""

    intent: Intent
    confidence: float = Field(ge=0, le=1)
    parameters: dict[str, Any] = Field(default_factory=dict)
    response: str = ""
