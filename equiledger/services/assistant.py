from __future__ import annotations

import logging
from typing import Any
from uuid import UUID

from ..schemas.api import ChatReply
from ..schemas.intents import Intent, IntentResult
from ..schemas.operations import OperationResult, ReportType
from .intents import IntentResolver
from .operations import GENERIC_FAILURE, OperationHandlers

logger = logging.getLogger(__name__)

GREETING_TEXT = (
    "👋 Hi! I'm EquiLedger, your financial assistant. "
    "I can create invoices, log expenses and tell you how your business is doing."
)
REMINDERS_UNAVAILABLE = "⏰ Payment reminders aren't available yet. I'll let you know when they are."


class FinancialAssistant:
    """Routes one chat message to the matching operation and builds the reply."""

    def __init__(self, resolver: IntentResolver, handlers: OperationHandlers) -> None:
        self.resolver = resolver
        self.handlers = handlers

    async def handle_message(self, user_id: UUID, message: str) -> ChatReply:
        resolution = await self.resolver.resolve(user_id, message)
        try:
            result = await self.dispatch(user_id, resolution)
        except Exception:
            logger.exception("Dispatch of %s failed for user %s", resolution.intent, user_id)
            result = OperationResult.failure(GENERIC_FAILURE, error_code="internal")
        return ChatReply(
            intent=resolution.intent,
            confidence=resolution.confidence,
            success=result.success,
            message=result.message,
            data=result.data,
        )

    async def dispatch(self, user_id: UUID, resolution: IntentResult) -> OperationResult:
        intent = resolution.intent
        parameters: dict[str, Any] = dict(resolution.parameters)

        if intent is Intent.CREATE_INVOICE:
            return await self.handlers.create_invoice.execute(user_id, parameters)
        if intent is Intent.LOG_EXPENSE:
            return await self.handlers.log_expense.execute(user_id, parameters)
        if intent is Intent.UPDATE_INVOICE:
            return await self.handlers.mark_invoice_paid.execute(user_id, parameters)
        if intent is Intent.LIST_INVOICES:
            return await self.handlers.list_invoices.execute(user_id, parameters)
        if intent is Intent.FINANCIAL_SUMMARY:
            parameters["report_type"] = ReportType.FINANCIAL_SUMMARY.value
            return await self.handlers.generate_report.execute(user_id, parameters)
        if intent is Intent.COMPLIANCE_CHECK:
            parameters["report_type"] = ReportType.VAT_REPORT.value
            return await self.handlers.generate_report.execute(user_id, parameters)
        if intent is Intent.GENERATE_REPORT:
            return await self.handlers.generate_report.execute(user_id, parameters)
        if intent is Intent.SET_REMINDER:
            return OperationResult.ok(REMINDERS_UNAVAILABLE)
        if intent is Intent.GREETING:
            return OperationResult.ok(resolution.response or GREETING_TEXT)

        help_result = await self.handlers.help.execute(user_id, {})
        if resolution.confidence == 0 and resolution.response:
            return OperationResult.ok(f"{resolution.response}\n\n{help_result.message}")
        return help_result
