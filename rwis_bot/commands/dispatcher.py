"""Routes parsed commands to domain handlers and keeps conversation memory current."""

from __future__ import annotations

import asyncio
from typing import Any, Callable, Protocol

from rwis_bot.commands.parser import (
    ChatReply,
    Command,
    IssueReport,
    PersonalDataRequest,
    UnsupportedRequest,
)
from rwis_bot.memory.episodic_memory import EventRecorder, record_quietly
from rwis_bot.memory.session_store import ChatContext, SessionMemoryStore, encode_context

APOLOGY_REPLY = "Maaf, saya tidak bisa membantu Anda saat ini."
ISSUE_ACK_DEFAULT = "Terima kasih atas laporan Anda. Kami akan segera menindaklanjuti."
DEFAULT_HANDLER_TIMEOUT_SECONDS = 60
DEFAULT_MAX_TURNS = 10

# include selector -> ResidentLookup method
PERSONAL_DATA_SELECTORS: dict[str, str] = {
    "personal": "personal_data",
    "household": "household_data",
    "household_all": "household_members",
}


class ResidentLookup(Protocol):
    def personal_data(self, sender_id: str) -> str: ...

    def household_data(self, sender_id: str) -> str: ...

    def household_members(self, sender_id: str) -> str: ...


class IssueSink(Protocol):
    def report(self, sender_id: str, title: str, description: str, acknowledgement: str = "") -> str: ...


class Dispatcher:
    def __init__(
        self,
        *,
        residents: ResidentLookup,
        issues: IssueSink,
        session_store: SessionMemoryStore,
        event_log: EventRecorder,
        handler_timeout_seconds: float = DEFAULT_HANDLER_TIMEOUT_SECONDS,
        max_turns: int = DEFAULT_MAX_TURNS,
    ) -> None:
        self._residents = residents
        self._issues = issues
        self._store = session_store
        self._event_log = event_log
        self._handler_timeout = handler_timeout_seconds
        self._max_turns = max_turns

    async def dispatch(self, sender_id: str, command: Command) -> str:
        kind = type(command).__name__
        if isinstance(command, ChatReply):
            return command.value

        if isinstance(command, PersonalDataRequest):
            method_name = PERSONAL_DATA_SELECTORS.get(command.include)
            if method_name is None:
                return self._failed(sender_id, kind, f"invalid include selector: {command.include!r}")
            handler = getattr(self._residents, method_name)
            return await self._run(sender_id, kind, handler, sender_id)

        if isinstance(command, IssueReport):
            ack = await self._run(
                sender_id,
                kind,
                self._issues.report,
                sender_id,
                command.title,
                command.description,
                command.value,
            )
            return ack or ISSUE_ACK_DEFAULT

        if isinstance(command, UnsupportedRequest):
            return self._failed(sender_id, command.kind, "command type is not served")
        return self._failed(sender_id, kind, "unrecognized command")

    async def _run(self, sender_id: str, kind: str, handler: Callable[..., str], *args: Any) -> str:
        try:
            reply = await asyncio.wait_for(
                asyncio.to_thread(handler, *args),
                timeout=self._handler_timeout,
            )
        except asyncio.TimeoutError:
            return self._failed(sender_id, kind, "handler timeout")
        except Exception as exc:
            return self._failed(sender_id, kind, str(exc))
        record_quietly(
            self._event_log,
            "command_dispatched",
            {"sender_id": sender_id, "command": kind},
            decision="allow",
        )
        return reply

    def _failed(self, sender_id: str, kind: str, error: str) -> str:
        record_quietly(
            self._event_log,
            "dispatch_failed",
            {"sender_id": sender_id, "command": kind, "error": error},
            decision="deny",
        )
        return APOLOGY_REPLY

    def remember(self, previous: ChatContext, message: str, reply: str) -> bool:
        """Write back the context read before the model call plus this exchange.

        Oldest pairs are dropped until the encoded context fits the store's entry
        limit, so the newest exchange is kept whenever it fits on its own.
        """
        updated = previous.with_exchange(message, reply, max_turns=self._max_turns)
        limit = self._store.max_entry_bytes
        while len(updated.turns) > 2 and len(encode_context(updated)) > limit:
            updated = ChatContext(updated.sender_id, updated.turns[2:])
        return self._store.put(updated)
