from __future__ import annotations

import http.client
import re
import time
import unittest
from typing import Any, Sequence
from unittest.mock import patch

from rwis_bot.commands.dispatcher import APOLOGY_REPLY, Dispatcher
from rwis_bot.intake import InboundMessage, IntakeRouter, extract_text, normalize_sender
from rwis_bot.llm import LanguageGateway, LlmError
from rwis_bot.memory.session_store import ConversationTurn, SessionMemoryStore


class RecordingLog:
    def __init__(self) -> None:
        self.events: list[tuple[str, dict[str, Any]]] = []

    def record(self, event_type: str, payload: dict[str, Any], *, decision: str | None = None) -> int:
        self.events.append((event_type, payload))
        return len(self.events)

    def types(self) -> list[str]:
        return [event[0] for event in self.events]


class BrokenLog:
    def record(self, event_type: str, payload: dict[str, Any], *, decision: str | None = None) -> int:
        raise RuntimeError("database is locked")


class FakeTransport:
    def __init__(self, *, fail: bool = False) -> None:
        self.sent: list[tuple[str, str]] = []
        self._fail = fail

    async def send(self, recipient: str, text: str) -> None:
        if self._fail:
            raise ConnectionError("transport down")
        self.sent.append((recipient, text))


class FakeGateway:
    def __init__(self, *answers: str | Exception, delay: float = 0.0) -> None:
        self._answers = list(answers)
        self._delay = delay
        self.calls: list[tuple[tuple[ConversationTurn, ...], str]] = []

    def complete(self, prior_turns: Sequence[ConversationTurn], new_message: str) -> str:
        self.calls.append((tuple(prior_turns), new_message))
        if self._delay:
            time.sleep(self._delay)
        answer = self._answers.pop(0) if len(self._answers) > 1 else self._answers[0]
        if isinstance(answer, Exception):
            raise answer
        return answer


class FakeResidents:
    def __init__(self) -> None:
        self.calls: list[str] = []

    def personal_data(self, sender_id: str) -> str:
        self.calls.append(sender_id)
        return f"*Data kependudukan Anda*:\n*NIK*: 3201-{sender_id}"

    def household_data(self, sender_id: str) -> str:
        return "household"

    def household_members(self, sender_id: str) -> str:
        return "members"


class FakeIssues:
    def report(self, sender_id: str, title: str, description: str, acknowledgement: str = "") -> str:
        return acknowledgement


class IntakeRouterTests(unittest.IsolatedAsyncioTestCase):
    def _router(
        self,
        gateway: Any,
        *,
        transport: FakeTransport | None = None,
        llm_timeout: float = 5,
        log: Any = None,
    ) -> IntakeRouter:
        self.log = log or RecordingLog()
        self.transport = transport or FakeTransport()
        self.gateway = gateway
        self.residents = FakeResidents()
        self.store = SessionMemoryStore(shards=4, max_entry_bytes=2048, hard_max_bytes=4 * 8192)
        dispatcher = Dispatcher(
            residents=self.residents,
            issues=FakeIssues(),
            session_store=self.store,
            event_log=self.log,
            max_turns=3,
        )
        return IntakeRouter(
            transport=self.transport,
            gateway=gateway,
            dispatcher=dispatcher,
            session_store=self.store,
            event_log=self.log,
            llm_timeout_seconds=llm_timeout,
        )

    async def test_ping_answers_without_model_or_memory(self) -> None:
        router = self._router(FakeGateway(LlmError("must not be called")))
        await router.on_message(InboundMessage(sender="A:4@s.whatsapp.net", conversation="  ping \n"))
        self.assertEqual(len(self.transport.sent), 1)
        recipient, text = self.transport.sent[0]
        self.assertEqual(recipient, "A")
        self.assertRegex(text, r"^Pong! Response Time: \d+ns$")
        self.assertGreaterEqual(int(re.findall(r"\d+", text)[0]), 0)
        self.assertEqual(self.gateway.calls, [])
        self.assertEqual(len(self.store), 0)

    async def test_ping_is_case_sensitive(self) -> None:
        router = self._router(FakeGateway('{"type": "chat", "value": "Halo"}'))
        await router.on_message(InboundMessage(sender="A", conversation="Ping"))
        self.assertEqual(len(self.gateway.calls), 1)
        self.assertEqual(self.transport.sent, [("A", "Halo")])

    async def test_chat_command_reply_and_memory(self) -> None:
        router = self._router(FakeGateway('{"type":"chat","value":"Baik, ada yang bisa saya bantu?"}'))
        await router.on_message(InboundMessage(sender="B", conversation="Halo bot"))
        self.assertEqual(self.transport.sent, [("B", "Baik, ada yang bisa saya bantu?")])
        turns = self.store.get("B").turns
        self.assertEqual(
            turns,
            (
                ConversationTurn("user", "Halo bot"),
                ConversationTurn("model", "Baik, ada yang bisa saya bantu?"),
            ),
        )

    async def test_unparsable_output_is_sent_raw_and_remembered(self) -> None:
        router = self._router(FakeGateway("I'm not sure"))
        await router.on_message(InboundMessage(sender="C", conversation="Apa kabar?"))
        self.assertEqual(self.transport.sent, [("C", "I'm not sure")])
        self.assertEqual(self.store.get("C").turns[-1], ConversationTurn("model", "I'm not sure"))
        self.assertIn("command_parse_failed", self.log.types())

    async def test_model_timeout_sends_apology_and_remembers_it(self) -> None:
        router = self._router(FakeGateway('{"type":"chat","value":"late"}', delay=0.5), llm_timeout=0.05)
        await router.on_message(InboundMessage(sender="D", conversation="Tolong bantu"))
        self.assertEqual(self.transport.sent, [("D", APOLOGY_REPLY)])
        self.assertEqual(
            self.store.get("D").turns,
            (ConversationTurn("user", "Tolong bantu"), ConversationTurn("model", APOLOGY_REPLY)),
        )
        self.assertIn("llm_error", self.log.types())

    async def test_model_error_sends_apology(self) -> None:
        router = self._router(FakeGateway(LlmError("Gemini API returned no candidate text")))
        await router.on_message(InboundMessage(sender="E", conversation="Halo"))
        self.assertEqual(self.transport.sent, [("E", APOLOGY_REPLY)])
        self.assertEqual(self.store.get("E").turns[-1].text, APOLOGY_REPLY)

    async def test_prior_turns_are_passed_to_the_model(self) -> None:
        router = self._router(
            FakeGateway('{"type":"chat","value":"Satu"}', '{"type":"chat","value":"Dua"}')
        )
        await router.on_message(InboundMessage(sender="F", conversation="pertama"))
        await router.on_message(InboundMessage(sender="F:2@s.whatsapp.net", extended_text="kedua"))
        first_prior, first_message = self.gateway.calls[0]
        second_prior, second_message = self.gateway.calls[1]
        self.assertEqual((first_prior, first_message), ((), "pertama"))
        self.assertEqual(second_message, "kedua")
        self.assertEqual(
            second_prior,
            (ConversationTurn("user", "pertama"), ConversationTurn("model", "Satu")),
        )

    async def test_personal_data_request_reaches_resident_handler(self) -> None:
        router = self._router(FakeGateway('{"type": "personal_data_request", "include": "personal"}'))
        await router.on_message(InboundMessage(sender="6281:9@s.whatsapp.net", conversation="Siapa saya?"))
        self.assertEqual(self.residents.calls, ["6281"])
        self.assertEqual(self.transport.sent[0][1], "*Data kependudukan Anda*:\n*NIK*: 3201-6281")

    async def test_group_and_empty_messages_are_discarded(self) -> None:
        router = self._router(FakeGateway('{"type":"chat","value":"x"}'))
        await router.on_message(InboundMessage(sender="G", is_group=True, conversation="ping"))
        await router.on_message(InboundMessage(sender="G", conversation=None, extended_text="   "))
        self.assertEqual(self.transport.sent, [])
        self.assertEqual(self.gateway.calls, [])
        self.assertEqual(self.log.types(), ["message_discarded", "message_discarded"])

    async def test_send_failure_is_recorded_not_raised(self) -> None:
        router = self._router(FakeGateway('{"type":"chat","value":"x"}'), transport=FakeTransport(fail=True))
        await router.on_message(InboundMessage(sender="H", conversation="halo"))
        self.assertIn("message_send_failed", self.log.types())
        # Memory still reflects the reply that was produced.
        self.assertEqual(self.store.get("H").turns[-1].text, "x")

    async def test_replayed_event_keeps_store_well_formed(self) -> None:
        router = self._router(FakeGateway('{"type":"chat","value":"jawaban"}'))
        event = InboundMessage(sender="I", conversation="pertanyaan yang sama")
        for _ in range(5):
            await router.on_message(event)
        turns = self.store.get("I").turns
        self.assertEqual(len(turns), 6)
        self.assertEqual([t.role for t in turns], ["user", "model"] * 3)
        self.assertEqual(len(self.transport.sent), 5)


    async def test_unexpected_gateway_error_sends_apology_and_remembers_it(self) -> None:
        router = self._router(FakeGateway(RuntimeError("connection reset mid-body")))
        await router.on_message(InboundMessage(sender="J", conversation="halo"))
        self.assertEqual(self.transport.sent, [("J", APOLOGY_REPLY)])
        self.assertEqual(
            self.store.get("J").turns,
            (ConversationTurn("user", "halo"), ConversationTurn("model", APOLOGY_REPLY)),
        )
        self.assertEqual(self.log.types(), ["llm_error"])

    async def test_truncated_backend_response_sends_apology(self) -> None:
        class TruncatedResponse:
            def read(self) -> bytes:
                raise http.client.IncompleteRead(b"")

            def __enter__(self) -> "TruncatedResponse":
                return self

            def __exit__(self, *exc: object) -> None:
                return None

        router = self._router(LanguageGateway("k-123"))
        with patch("rwis_bot.llm.request.urlopen", return_value=TruncatedResponse()):
            await router.on_message(InboundMessage(sender="K", conversation="halo"))
        self.assertEqual(self.transport.sent, [("K", APOLOGY_REPLY)])
        self.assertEqual(self.store.get("K").turns[-1], ConversationTurn("model", APOLOGY_REPLY))

    async def test_failing_event_log_never_costs_the_reply(self) -> None:
        router = self._router(
            FakeGateway('{"type": "personal_data_request", "include": "personal"}'),
            log=BrokenLog(),
        )
        await router.on_message(InboundMessage(sender="6282", conversation="Siapa saya?"))
        self.assertEqual(self.transport.sent, [("6282", "*Data kependudukan Anda*:\n*NIK*: 3201-6282")])
        self.assertEqual(self.store.get("6282").turns[0], ConversationTurn("user", "Siapa saya?"))

    async def test_failing_event_log_on_error_paths(self) -> None:
        router = self._router(FakeGateway("bukan json"), log=BrokenLog())
        await router.on_message(InboundMessage(sender="L", conversation="halo"))
        await router.on_message(InboundMessage(sender="L", is_group=True, conversation="halo"))
        self.assertEqual(self.transport.sent, [("L", "bukan json")])
        self.assertEqual(self.store.get("L").turns[-1].text, "bukan json")


class HelperTests(unittest.TestCase):
    def test_normalize_sender(self) -> None:
        self.assertEqual(normalize_sender("628123:7@s.whatsapp.net"), "628123")
        self.assertEqual(normalize_sender("628123@s.whatsapp.net"), "628123")
        self.assertEqual(normalize_sender("4242"), "4242")

    def test_extract_text_prefers_plain_form(self) -> None:
        self.assertEqual(extract_text(InboundMessage("a", conversation="x", extended_text="y")), "x")
        self.assertEqual(extract_text(InboundMessage("a", conversation="", extended_text="y")), "y")
        self.assertIsNone(extract_text(InboundMessage("a")))

    def test_whitespace_plain_text_does_not_fall_back(self) -> None:
        self.assertIsNone(extract_text(InboundMessage("a", conversation="  ", extended_text="y")))
        self.assertIsNone(extract_text(InboundMessage("a", conversation=None, extended_text="\n")))


if __name__ == "__main__":
    unittest.main()
