"""Telegram transport using python-telegram-bot: feeds updates to the intake router and sends replies."""

from __future__ import annotations

import asyncio
from typing import Any

from telegram import Update
from telegram.constants import ChatType
from telegram.ext import Application, ContextTypes, MessageHandler, filters

from rwis_bot.intake import InboundMessage, IntakeRouter
from rwis_bot.memory.episodic_memory import EventRecorder

MAX_TELEGRAM_MESSAGE_LEN = 3900
DEFAULT_SEND_TIMEOUT_SECONDS = 60


def _truncate(text: str) -> str:
    if len(text) <= MAX_TELEGRAM_MESSAGE_LEN:
        return text
    return text[: MAX_TELEGRAM_MESSAGE_LEN - 3] + "..."


def inbound_from_update(update: Any) -> InboundMessage | None:
    """Reduce a Telegram update to the fields the router needs."""
    message = update.effective_message
    chat = update.effective_chat
    if message is None or chat is None:
        return None
    return InboundMessage(
        sender=str(chat.id),
        is_group=chat.type != ChatType.PRIVATE,
        conversation=message.text,
        extended_text=message.caption,
    )


class TelegramBot:
    def __init__(self, *, token: str, event_log: EventRecorder, profile_name: str) -> None:
        self._token = token
        self._event_log = event_log
        self._profile_name = profile_name
        self._router: IntakeRouter | None = None
        self._app: Application | None = None
        self._loop: asyncio.AbstractEventLoop | None = None

    def attach(self, router: IntakeRouter) -> None:
        self._router = router

    def run(self) -> None:
        """Poll Telegram until interrupted. Blocks the calling (main) thread."""
        if self._router is None:
            raise RuntimeError("TelegramBot.run() called before a router was attached")
        self._app = (
            Application.builder()
            .token(self._token)
            .concurrent_updates(True)
            .post_init(self._post_init)
            .build()
        )
        self._app.add_handler(MessageHandler(filters.UpdateType.MESSAGE, self._handle_message))
        self._event_log.record("bot_started", {"profile": self._profile_name}, decision="allow")
        try:
            # run_polling installs its own signal handlers; it must own the main thread.
            self._app.run_polling(allowed_updates=Update.ALL_TYPES)
        finally:
            self._loop = None
            self._app = None
            self._event_log.record("bot_stopped", {"profile": self._profile_name}, decision="allow")

    async def _post_init(self, app: Application) -> None:
        self._loop = asyncio.get_running_loop()
        await app.bot.set_my_commands([])

    async def _handle_message(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        event = inbound_from_update(update)
        if event is None or self._router is None:
            return
        await self._router.on_message(event)

    async def send(self, recipient: str, text: str) -> None:
        if self._app is None:
            raise RuntimeError("Telegram bot is not running")
        await self._app.bot.send_message(chat_id=int(recipient), text=_truncate(text))

    def send_blocking(self, recipient: str, text: str, timeout: float = DEFAULT_SEND_TIMEOUT_SECONDS) -> None:
        """Send from a non-loop thread (the admin HTTP server) through the bot's event loop."""
        loop = self._loop
        if loop is None:
            raise RuntimeError("Telegram bot is not running")
        future = asyncio.run_coroutine_threadsafe(self.send(recipient, text), loop)
        future.result(timeout=timeout)
