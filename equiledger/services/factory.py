from __future__ import annotations

from functools import lru_cache
from typing import Optional
from zoneinfo import ZoneInfo

from sqlalchemy.ext.asyncio import AsyncSession

from ..config import get_settings
from ..models import Channel
from ..repositories import SqlLedgerRepository
from ..schemas.api import ChatReply
from .assistant import FinancialAssistant
from .intents import GeminiIntentClassifier, IntentResolver
from .numbering import default_allocator
from .operations import OperationHandlers, build_operation_handlers
from .workflows import WorkflowEngine


@lru_cache(maxsize=1)
def get_business_timezone() -> ZoneInfo:
    return ZoneInfo(get_settings().business_timezone)


@lru_cache(maxsize=1)
def get_intent_resolver() -> IntentResolver:
    settings = get_settings()
    classifier = GeminiIntentClassifier(settings.gemini_api_key, settings.gemini_model)
    return IntentResolver(
        classifier,
        timeout_seconds=settings.intent_timeout_seconds,
        max_message_length=settings.max_message_length,
    )


def build_repository(session: AsyncSession) -> SqlLedgerRepository:
    settings = get_settings()
    return SqlLedgerRepository(
        session,
        default_currency=settings.default_currency,
        default_vat_rate=settings.default_vat_rate,
    )


def build_handlers(session: AsyncSession) -> OperationHandlers:
    return build_operation_handlers(
        build_repository(session),
        allocator=default_allocator,
        business_timezone=get_business_timezone(),
    )


def build_assistant(session: AsyncSession) -> FinancialAssistant:
    return FinancialAssistant(get_intent_resolver(), build_handlers(session))


def build_workflow_engine(handlers: OperationHandlers) -> WorkflowEngine:
    settings = get_settings()
    return WorkflowEngine(
        handlers,
        max_attempts=settings.workflow_max_attempts,
        base_delay=settings.workflow_retry_base_delay_seconds,
    )


async def answer_channel_message(
    session: AsyncSession,
    channel: Channel,
    handle: str,
    text: str,
    display_name: Optional[str] = None,
) -> ChatReply:
    """Resolve the channel sender to an owner and let the assistant answer them."""
    repository = build_repository(session)
    user = await repository.get_or_create_channel_user(channel, handle, display_name)
    return await build_assistant(session).handle_message(user.id, text)
