"""Inbound message routing: filtering, the ping fast path and the model pipeline."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Protocol

from rwis_bot.commands.dispatcher import APOLOGY_REPLY, Dispatcher
from rwis_bot.commands.parser import ParseError, parse_command
from rwis_bot.llm import LanguageGateway
from rwis_bot.memory.episodic_memory import EventRecorder, record_quietly
from rwis_bot.memory.session_store import SessionMemoryStore

PING_LITERAL = "ping"
DEFAULT_LLM_TIMEOUT_SECONDS = 60


@dataclass(frozen=True)
class InboundMessage:
    sender: str
    is_group: bool = False
    conversation: str | None = None
    extended_text: str | None = None


class Transport(Protocol):
    async def send(self, recipient: str, text: str) -> None: ...


def normalize_sender(address: str) -> str:
    """Strip the server part and any device qualifier: '62812:3@s.whatsapp.net' -> '62812'."""
    user = address.strip().split("@", 1)[0]
    return user.split(":", 1)[0]


def extract_text(event: InboundMessage) -> str | None:
    # The extended form is used only when the plain form is empty; whitespace-only text counts as none.
    text = event.conversation or event.extended_text
    if text is None or not text.strip():
        return None
    return text


def pong_text(elapsed_ns: int) -> str:
    return f"Pong! Response Time: {max(0, elapsed_ns)}ns"


class IntakeRouter:
    def __init__(
        self,
        *,
        transport: Transport,
        gateway: LanguageGateway,
        dispatcher: Dispatcher,
        session_store: SessionMemoryStore,
        event_log: EventRecorder,
        llm_timeout_seconds: float = DEFAULT_LLM_TIMEOUT_SECONDS,
    ) -> None:
        self._transport = transport
        self._gateway = gateway
        self._dispatcher = dispatcher
        self._store = session_store
        self._event_log = event_log
        self._llm_timeout = llm_timeout_seconds

    async def on_message(self, event: InboundMessage) -> None:
        received_ns = time.perf_counter_ns()
        text = extract_text(event)
        if text is None:
            self._discard(event, "no_text")
            return
        if event.is_group:
            self._discard(event, "group_message")
            return

        sender_id = normalize_sender(event.sender)
        message = text.strip()
        try:
            if message == PING_LITERAL:
                await self._send(sender_id, pong_text(time.perf_counter_ns() - received_ns))
                record_quietly(
                    self._event_log, "ping_answered", {"sender_id": sender_id}, decision="allow"
                )
                return
            reply = await self.converse(sender_id, message)
            await self._send(sender_id, reply)
        except Exception as exc:
            record_quietly(
                self._event_log,
                "message_pipeline_error",
                {"sender_id": sender_id, "error": str(exc)},
                decision="deny",
            )

    async def converse(self, sender_id: str, message: str) -> str:
        """Read memory, ask the model, act on its command, then write memory back."""
        previous = self._store.get(sender_id)
        try:
            raw = await asyncio.wait_for(
                asyncio.to_thread(self._gateway.complete, previous.turns, message),
                timeout=self._llm_timeout,
            )
        except Exception as exc:
            # Any backend failure, the timeout included, becomes the apology.
            record_quietly(
                self._event_log,
                "llm_error",
                {"sender_id": sender_id, "error": str(exc) or type(exc).__name__},
                decision="deny",
            )
            reply = APOLOGY_REPLY
        else:
            reply = await self._reply_for_completion(sender_id, raw)

        self._dispatcher.remember(previous, message, reply)
        return reply

    async def _reply_for_completion(self, sender_id: str, raw: str) -> str:
        try:
            command = parse_command(raw)
        except ParseError as exc:
            # Unparsable output is still shown to the user as-is.
            record_quietly(
                self._event_log,
                "command_parse_failed",
                {"sender_id": sender_id, "error": str(exc), "raw": raw[:200]},
                decision="deny",
            )
            return raw
        return await self._dispatcher.dispatch(sender_id, command)

    async def _send(self, recipient: str, text: str) -> None:
        try:
            await self._transport.send(recipient, text)
        except Exception as exc:
            record_quietly(
                self._event_log,
                "message_send_failed",
                {"recipient": recipient, "error": str(exc)},
                decision="deny",
            )

    def _discard(self, event: InboundMessage, reason: str) -> None:
        record_quietly(
            self._event_log,
            "message_discarded",
            {"sender": event.sender, "reason": reason},
            decision="deny",
        )
