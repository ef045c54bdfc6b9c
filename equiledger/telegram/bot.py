from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Any, Optional

from telegram import BotCommand, Update
from telegram.ext import (
    AIORateLimiter,
    Application,
    CommandHandler,
    ContextTypes,
    MessageHandler,
    filters,
)

from ..config import get_settings
from ..db import SessionLocal
from ..models import Channel
from ..schemas.operations import ReportType
from ..services.factory import answer_channel_message, build_handlers, build_repository
from ..services.operations import GENERIC_FAILURE, HELP_TEXT

logger = logging.getLogger(__name__)

ALLOWED_UPDATES = ["message"]

WELCOME_TEXT = (
    "👋 Welcome to EquiLedger!\n"
    "Just tell me what happened in plain language, for example:\n"
    "• \"Invoice ABC Company R500 for website design\"\n"
    "• \"Spent R450 on fuel\"\n"
    "• \"How did I do this month?\"\n"
    "Send /help to see everything I can do."
)

_application: Application | None = None
_lock = asyncio.Lock()


def _owner_handle(update: Update) -> tuple[str, Optional[str]]:
    tele_user = update.effective_user
    return str(tele_user.id), getattr(tele_user, "full_name", None)


async def start(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    if not update.message:
        return
    await update.message.reply_text(WELCOME_TEXT)


async def help_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    if not update.message:
        return
    await update.message.reply_text(HELP_TEXT)


async def _run_operation(
    update: Update,
    context: ContextTypes.DEFAULT_TYPE,
    operation: str,
    parameters: dict[str, Any],
) -> None:
    if not update.message or update.effective_user is None:
        return
    session_factory = context.application.bot_data["session_factory"]
    handle, display_name = _owner_handle(update)
    try:
        async with session_factory() as session:
            repository = build_repository(session)
            user = await repository.get_or_create_channel_user(Channel.TELEGRAM, handle, display_name)
            handler = getattr(build_handlers(session), operation)
            result = await handler.execute(user.id, parameters)
    except Exception:
        logger.exception("Telegram %s failed for chat user %s", operation, handle)
        await update.message.reply_text(GENERIC_FAILURE)
        return
    await update.message.reply_text(result.message)


async def invoices_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    args = list(getattr(context, "args", []) or [])
    status = args[0].lower() if args else "unpaid"
    await _run_operation(update, context, "list_invoices", {"status": status})


async def summary_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    args = list(getattr(context, "args", []) or [])
    period = args[0].lower() if args else "month"
    await _run_operation(
        update,
        context,
        "generate_report",
        {"report_type": ReportType.FINANCIAL_SUMMARY.value, "period": period},
    )


async def vat_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    args = list(getattr(context, "args", []) or [])
    period = args[0].lower() if args else "month"
    await _run_operation(
        update,
        context,
        "generate_report",
        {"report_type": ReportType.VAT_REPORT.value, "period": period},
    )


async def free_text_message(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    if not update.message or update.effective_user is None:
        return
    text = (update.message.text or "").strip()
    if not text or text.startswith("/"):
        return
    session_factory = context.application.bot_data["session_factory"]
    handle, display_name = _owner_handle(update)
    try:
        async with session_factory() as session:
            reply = await answer_channel_message(
                session, Channel.TELEGRAM, handle, text, display_name
            )
    except Exception:
        logger.exception("Telegram message from %s could not be answered", handle)
        await update.message.reply_text(GENERIC_FAILURE)
        return
    await update.message.reply_text(reply.message)


def _create_application(token: str) -> Application:
    application = (
        Application.builder()
        .token(token)
        .rate_limiter(AIORateLimiter())
        .build()
    )
    application.bot_data["session_factory"] = SessionLocal
    application.add_handler(CommandHandler("start", start))
    application.add_handler(CommandHandler("help", help_command))
    application.add_handler(CommandHandler("invoices", invoices_command))
    application.add_handler(CommandHandler("summary", summary_command))
    application.add_handler(CommandHandler("vat", vat_command))
    application.add_handler(MessageHandler(filters.TEXT & ~filters.COMMAND, free_text_message))
    return application


async def init_bot() -> None:
    """Initialise the Telegram bot and register the webhook."""
    settings = get_settings()
    if not settings.telegram_bot_token or not settings.telegram_webhook_secret:
        logger.info("Telegram bot or webhook secret not configured; skipping bot initialisation.")
        return
    if not settings.backend_base_url:
        logger.warning("BACKEND_BASE_URL is missing; skipping Telegram webhook setup.")
        return

    base_url = str(settings.backend_base_url)
    webhook_url = base_url.rstrip("/") + f"/api/telegram/webhook/{settings.telegram_webhook_secret}"

    async with _lock:
        global _application
        if _application is not None:
            return

        application = _create_application(settings.telegram_bot_token)
        try:
            await application.initialize()
            await application.start()
            try:
                await application.bot.set_my_commands(
                    [
                        BotCommand("start", "Show welcome message"),
                        BotCommand("help", "List what I can do"),
                        BotCommand("invoices", "List invoices (unpaid by default)"),
                        BotCommand("summary", "Revenue, expenses and profit"),
                        BotCommand("vat", "VAT collected, paid and owed"),
                    ]
                )
            except Exception:
                logger.exception("Failed to set Telegram command list.")
            if settings.telegram_register_webhook_on_start:
                await application.bot.set_webhook(
                    url=webhook_url, drop_pending_updates=False, allowed_updates=ALLOWED_UPDATES
                )
        except Exception:
            logger.exception("Failed to initialise Telegram webhook; bot disabled for this run.")
            with contextlib.suppress(Exception):
                await application.stop()
            with contextlib.suppress(Exception):
                await application.shutdown()
            return

        _application = application
        logger.info("Telegram webhook configured at %s", webhook_url)


async def handle_update(payload: dict[str, Any]) -> None:
    """Process a Telegram update forwarded by FastAPI."""
    async with _lock:
        if _application is None:
            raise RuntimeError("Telegram bot is not initialised.")
        application = _application
    update = Update.de_json(payload, application.bot)
    await application.process_update(update)


async def shutdown_bot() -> None:
    """Tear down the Telegram bot."""
    async with _lock:
        global _application
        if _application is None:
            return
        await _application.stop()
        await _application.shutdown()
        _application = None
