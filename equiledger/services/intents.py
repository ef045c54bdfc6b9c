from __future__ import annotations

import json
import logging
import math
from typing import Any, Optional, Protocol
from uuid import UUID

import anyio
import google.generativeai as genai
from pydantic import ValidationError

from ..schemas.intents import Intent, IntentResult

logger = logging.getLogger(__name__)

INTENT_PROMPT = """\
You are the intent detection system of EquiLedger, a financial assistant for South African
small businesses. Classify the user's message and extract its parameters.

Available intents:
- CREATE_INVOICE: create a new invoice (parameters: client_name, amount, description,
  due_in_days, vat_included)
- LIST_INVOICES: list invoices (parameters: status = all | paid | unpaid | draft | sent | overdue)
- UPDATE_INVOICE: mark an invoice as paid (parameters: invoice_number, method, reference)
- LOG_EXPENSE: record a business expense (parameters: amount, description, category, date)
- FINANCIAL_SUMMARY: revenue, expenses and profit summary (parameters: period = month | quarter | year)
- COMPLIANCE_CHECK: VAT position or tax compliance question (parameters: period)
- SET_REMINDER: payment reminder request
- GENERATE_REPORT: a specific report (parameters: report_type = financial_summary | vat_report |
  profit_loss, period)
- HELP: the user asks what you can do, or the message is unclear
- GREETING: greeting or small talk

Amounts are in ZAR unless stated otherwise. Dates use ISO format (YYYY-MM-DD).
Respond with JSON only:
{"intent": "INTENT_NAME", "confidence": 0.0-1.0, "parameters": {...}, "response": "short reply"}
"""

_INTENT_ALIASES: dict[str, Intent] = {
    "INVOICE_CREATE": Intent.CREATE_INVOICE,
    "INVOICE_LIST": Intent.LIST_INVOICES,
    "INVOICE_UPDATE": Intent.UPDATE_INVOICE,
    "EXPENSE_LOG": Intent.LOG_EXPENSE,
    "REMINDER_SET": Intent.SET_REMINDER,
    "REPORT_GENERATE": Intent.GENERATE_REPORT,
}

FALLBACK_RESPONSE = (
    "Sorry, I didn't quite get that. Try something like "
    "\"Invoice ABC Company R500 for website design\" or send /help."
)


class IntentClassificationError(RuntimeError):
    """Raised when the language model returns nothing usable."""


class IntentClassifier(Protocol):
    async def classify(self, message: str) -> str:
        """Return the raw JSON text describing the message's intent."""
        ...


class GeminiIntentClassifier:
    """Thin wrapper around Google's Gemini API in JSON mode."""

    def __init__(self, api_key: Optional[str], model_name: str = "gemini-2.5-flash") -> None:
        if not api_key:
            raise RuntimeError("GEMINI_API_KEY is not configured.")
        genai.configure(api_key=api_key)
        self.model = genai.GenerativeModel(
            model_name,
            system_instruction=INTENT_PROMPT,
            generation_config={"response_mime_type": "application/json", "temperature": 0.1},
        )

    def _call_model(self, message: str) -> str:
        response = self.model.generate_content(message)
        if not response or not response.text:
            raise IntentClassificationError("Gemini did not return any text.")
        return response.text

    async def classify(self, message: str) -> str:
        return await anyio.to_thread.run_sync(self._call_model, message, abandon_on_cancel=True)


def clean_model_output(raw_text: str) -> str:
    """Remove Markdown code fences that Gemini may wrap around JSON."""
    text = raw_text.strip()
    if text.startswith("```"):
        first_newline = text.find("\n")
        text = text[first_newline + 1 :] if first_newline != -1 else ""
    if text.endswith("```"):
        text = text[: text.rfind("```")]
    return text.strip()


def normalise_intent(raw: Any) -> Optional[Intent]:
    if not isinstance(raw, str):
        return None
    key = raw.strip().upper().replace(" ", "_")
    if key in _INTENT_ALIASES:
        return _INTENT_ALIASES[key]
    try:
        return Intent(key)
    except ValueError:
        return None


def fallback_result(response: str = FALLBACK_RESPONSE) -> IntentResult:
    return IntentResult(intent=Intent.HELP, confidence=0.0, parameters={}, response=response)


class IntentResolver:
    """Turns free text into an ``IntentResult``; never raises, degrades to HELP."""

    def __init__(
        self,
        classifier: IntentClassifier,
        *,
        timeout_seconds: float = 15.0,
        max_message_length: int = 1000,
        min_confidence: float = 0.3,
    ) -> None:
        self.classifier = classifier
        self.timeout_seconds = timeout_seconds
        self.max_message_length = max_message_length
        self.min_confidence = min_confidence

    async def resolve(self, user_id: UUID, message: str) -> IntentResult:
        text = (message or "").strip()
        if not text:
            return fallback_result()
        if len(text) > self.max_message_length:
            logger.info("Message from user %s exceeds %d characters", user_id, self.max_message_length)
            return fallback_result(
                f"That message is too long. Please keep it under {self.max_message_length} characters."
            )

        try:
            with anyio.fail_after(self.timeout_seconds):
                raw_text = await self.classifier.classify(text)
        except TimeoutError:
            logger.warning("Intent classification timed out for user %s", user_id)
            return fallback_result()
        except Exception:
            logger.exception("Intent classification failed for user %s", user_id)
            return fallback_result()

        if not isinstance(raw_text, str):
            logger.warning("Classifier returned %s for user %s", type(raw_text).__name__, user_id)
            return fallback_result()
        return self._parse(user_id, raw_text)

    def _parse(self, user_id: UUID, raw_text: str) -> IntentResult:
        try:
            payload = json.loads(clean_model_output(raw_text or ""))
        except json.JSONDecodeError:
            logger.warning("Could not parse classifier output for user %s: %r", user_id, raw_text)
            return fallback_result()
        if not isinstance(payload, dict):
            return fallback_result()

        intent = normalise_intent(payload.get("intent"))
        if intent is None:
            logger.info("Unknown intent %r for user %s", payload.get("intent"), user_id)
            return fallback_result()

        try:
            confidence = float(payload.get("confidence", 0.0))
        except (TypeError, ValueError, OverflowError):
            confidence = 0.0
        if not math.isfinite(confidence):
            confidence = 0.0
        confidence = min(max(confidence, 0.0), 1.0)
        if confidence < self.min_confidence and intent not in (Intent.HELP, Intent.GREETING):
            return fallback_result()

        parameters = payload.get("parameters")
        response = payload.get("response")
        try:
            return IntentResult(
                intent=intent,
                confidence=confidence,
                parameters=parameters if isinstance(parameters, dict) else {},
                response=response if isinstance(response, str) else "",
            )
        except ValidationError:
            logger.warning("Rejected classifier output for user %s: %r", user_id, raw_text)
            return fallback_result()
