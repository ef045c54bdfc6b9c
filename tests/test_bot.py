from __future__ import annotations

from contextlib import asynccontextmanager
from types import SimpleNamespace
from unittest import IsolatedAsyncioTestCase
from unittest.mock import AsyncMock, MagicMock, patch
from uuid import UUID

from equiledger.models import Channel
from equiledger.schemas.intents import Intent
from equiledger.schemas.api import ChatReply
from equiledger.schemas.operations import OperationResult
from equiledger.telegram import bot

OWNER_ID = UUID("11111111-2222-3333-4444-555555555555")


class DummyMessage:
    """Minimal stand-in for a Telegram message used in handlers."""

    def __init__(self, text: str | None = None) -> None:
        self.text = text
        self.reply_text = AsyncMock()


def _update(text: str | None) -> SimpleNamespace:
    return SimpleNamespace(
        message=DummyMessage(text),
        effective_user=SimpleNamespace(id=528101001, full_name="Thandi Tester"),
    )


def _context(args: list[str] | None = None) -> SimpleNamespace:
    session = object()

    @asynccontextmanager
    async def session_factory():
        yield session

    context = SimpleNamespace(
        application=SimpleNamespace(bot_data={"session_factory": session_factory}),
        args=args or [],
    )
    context.session = session
    return context


class TelegramBotTests(IsolatedAsyncioTestCase):
    async def test_start_sends_welcome(self) -> None:
        update = _update("/start")
        await bot.start(update, _context())
        update.message.reply_text.assert_awaited_once_with(bot.WELCOME_TEXT)

    async def test_free_text_goes_to_assistant(self) -> None:
        update = _update("Invoice ABC Company R500 for website design")
        context = _context()
        reply = ChatReply(
            intent=Intent.CREATE_INVOICE, confidence=0.95, success=True, message="✅ Invoice INV-0001"
        )
        with patch("equiledger.telegram.bot.answer_channel_message", new=AsyncMock(return_value=reply)) as answer:
            await bot.free_text_message(update, context)

        answer.assert_awaited_once_with(
            context.session,
            Channel.TELEGRAM,
            "528101001",
            "Invoice ABC Company R500 for website design",
            "Thandi Tester",
        )
        update.message.reply_text.assert_awaited_once_with("✅ Invoice INV-0001")

    async def test_free_text_ignores_commands_and_blank_messages(self) -> None:
        for text in ["/unknown", "   ", None]:
            with self.subTest(text=text):
                update = _update(text)
                with patch("equiledger.telegram.bot.answer_channel_message", new=AsyncMock()) as answer:
                    await bot.free_text_message(update, _context())
                answer.assert_not_awaited()
                update.message.reply_text.assert_not_awaited()

    async def test_failures_get_generic_reply(self) -> None:
        update = _update("hello")
        with patch(
            "equiledger.telegram.bot.answer_channel_message",
            new=AsyncMock(side_effect=RuntimeError("GEMINI_API_KEY is not configured.")),
        ):
            with self.assertLogs("equiledger.telegram.bot", level="ERROR"):
                await bot.free_text_message(update, _context())
        update.message.reply_text.assert_awaited_once_with(bot.GENERIC_FAILURE)

    async def test_invoices_command_lists_unpaid_by_default(self) -> None:
        update = _update("/invoices")
        context = _context()
        repository = MagicMock()
        repository.get_or_create_channel_user = AsyncMock(return_value=SimpleNamespace(id=OWNER_ID))
        list_invoices = SimpleNamespace(
            execute=AsyncMock(return_value=OperationResult.ok("📄 Your unpaid invoices:"))
        )
        handlers = SimpleNamespace(list_invoices=list_invoices)

        with patch("equiledger.telegram.bot.build_repository", return_value=repository), patch(
            "equiledger.telegram.bot.build_handlers", return_value=handlers
        ):
            await bot.invoices_command(update, context)

        repository.get_or_create_channel_user.assert_awaited_once_with(
            Channel.TELEGRAM, "528101001", "Thandi Tester"
        )
        list_invoices.execute.assert_awaited_once_with(OWNER_ID, {"status": "unpaid"})
        update.message.reply_text.assert_awaited_once_with("📄 Your unpaid invoices:")

    async def test_vat_command_passes_period(self) -> None:
        update = _update("/vat quarter")
        context = _context(["Quarter"])
        repository = MagicMock()
        repository.get_or_create_channel_user = AsyncMock(return_value=SimpleNamespace(id=OWNER_ID))
        generate_report = SimpleNamespace(execute=AsyncMock(return_value=OperationResult.ok("🧾")))

        with patch("equiledger.telegram.bot.build_repository", return_value=repository), patch(
            "equiledger.telegram.bot.build_handlers",
            return_value=SimpleNamespace(generate_report=generate_report),
        ):
            await bot.vat_command(update, context)

        generate_report.execute.assert_awaited_once_with(
            OWNER_ID, {"report_type": "vat_report", "period": "quarter"}
        )

    async def test_handle_update_requires_initialised_bot(self) -> None:
        with patch.object(bot, "_application", None):
            with self.assertRaises(RuntimeError):
                await bot.handle_update({"update_id": 1})
