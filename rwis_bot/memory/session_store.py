"""Short-term conversation memory keyed by sender identity.

Entries are JSON-encoded chat contexts held in a fixed number of shards, each
with its own lock, a share of the store-wide byte budget and write-ordered
eviction. Entries older than the life window read as misses.
"""

from __future__ import annotations

import hashlib
import json
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Callable

from rwis_bot.memory.episodic_memory import EventRecorder, record_quietly

ROLE_USER = "user"
ROLE_MODEL = "model"

DEFAULT_SHARDS = 1024
DEFAULT_LIFE_WINDOW_SECONDS = 600
DEFAULT_MAX_ENTRY_BYTES = 16 * 1024
DEFAULT_HARD_MAX_BYTES = 64 * 1024 * 1024


@dataclass(frozen=True)
class ConversationTurn:
    role: str
    text: str


@dataclass(frozen=True)
class ChatContext:
    sender_id: str
    turns: tuple[ConversationTurn, ...] = ()

    def with_exchange(self, message: str, reply: str, *, max_turns: int) -> ChatContext:
        """Return a new context with one user/model pair appended, keeping the newest pairs."""
        turns = self.turns + (
            ConversationTurn(ROLE_USER, message),
            ConversationTurn(ROLE_MODEL, reply),
        )
        return ChatContext(self.sender_id, turns[-max(1, max_turns) * 2:])


def encode_context(context: ChatContext) -> bytes:
    body = {
        "sender_id": context.sender_id,
        "turns": [{"role": t.role, "text": t.text} for t in context.turns],
    }
    return json.dumps(body, ensure_ascii=False, separators=(",", ":")).encode("utf-8")


def decode_context(raw: bytes) -> ChatContext:
    data = json.loads(raw.decode("utf-8"))
    if not isinstance(data, dict) or not isinstance(data.get("turns"), list):
        raise ValueError("chat context must be an object with a turns list")
    turns: list[ConversationTurn] = []
    for item in data["turns"]:
        if not isinstance(item, dict):
            raise ValueError("chat turn must be an object")
        role, text = item.get("role"), item.get("text")
        if role not in {ROLE_USER, ROLE_MODEL} or not isinstance(text, str):
            raise ValueError(f"invalid chat turn: {item!r}")
        turns.append(ConversationTurn(role, text))
    return ChatContext(str(data.get("sender_id", "")), tuple(turns))


@dataclass
class _Entry:
    payload: bytes
    written_at: float


@dataclass
class _Shard:
    capacity: int
    lock: threading.Lock = field(default_factory=threading.Lock)
    entries: OrderedDict[str, _Entry] = field(default_factory=OrderedDict)
    size: int = 0

    def drop(self, key: str) -> None:
        entry = self.entries.pop(key, None)
        if entry is not None:
            self.size -= len(entry.payload)


class SessionMemoryStore:
    def __init__(
        self,
        *,
        shards: int = DEFAULT_SHARDS,
        life_window_seconds: float = DEFAULT_LIFE_WINDOW_SECONDS,
        max_entry_bytes: int = DEFAULT_MAX_ENTRY_BYTES,
        hard_max_bytes: int = DEFAULT_HARD_MAX_BYTES,
        event_log: EventRecorder | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if shards < 1:
            raise ValueError("shards must be at least 1")
        shard_capacity = hard_max_bytes // shards
        if max_entry_bytes > shard_capacity:
            raise ValueError(
                f"max_entry_bytes ({max_entry_bytes}) exceeds the per-shard budget ({shard_capacity})"
            )
        self._life_window = life_window_seconds
        self._max_entry_bytes = max_entry_bytes
        self._hard_max_bytes = hard_max_bytes
        self._event_log = event_log
        self._clock = clock
        self._shards = [_Shard(capacity=shard_capacity) for _ in range(shards)]
        self._counter_lock = threading.Lock()
        self._evictions = 0
        self._rejections = 0

    @property
    def max_entry_bytes(self) -> int:
        return self._max_entry_bytes

    def _shard(self, key: str) -> _Shard:
        digest = hashlib.blake2b(key.encode("utf-8"), digest_size=8).digest()
        return self._shards[int.from_bytes(digest, "big") % len(self._shards)]

    def _expired(self, entry: _Entry, now: float) -> bool:
        return now - entry.written_at >= self._life_window

    def _record(self, event_type: str, payload: dict[str, Any]) -> None:
        record_quietly(self._event_log, event_type, payload, decision="deny")

    def get(self, sender_id: str) -> ChatContext:
        shard = self._shard(sender_id)
        now = self._clock()
        with shard.lock:
            entry = shard.entries.get(sender_id)
            if entry is None:
                return ChatContext(sender_id)
            if self._expired(entry, now):
                shard.drop(sender_id)
                return ChatContext(sender_id)
            payload = entry.payload
        try:
            context = decode_context(payload)
        except ValueError as exc:
            self._record("session_memory_decode_failed", {"sender_id": sender_id, "error": str(exc)})
            return ChatContext(sender_id)
        return ChatContext(sender_id, context.turns)

    def put(self, context: ChatContext) -> bool:
        try:
            payload = encode_context(context)
        except (TypeError, ValueError) as exc:
            self._reject(context.sender_id, f"encode failed: {exc}")
            return False
        if len(payload) > self._max_entry_bytes:
            self._reject(
                context.sender_id,
                f"entry is {len(payload)} bytes, limit is {self._max_entry_bytes}",
            )
            return False

        shard = self._shard(context.sender_id)
        now = self._clock()
        evicted = 0
        with shard.lock:
            shard.drop(context.sender_id)
            # Oldest writes sit at the front, so expired entries do too.
            while shard.entries:
                oldest_key, oldest = next(iter(shard.entries.items()))
                if not self._expired(oldest, now):
                    break
                shard.drop(oldest_key)
            shard.entries[context.sender_id] = _Entry(payload=payload, written_at=now)
            shard.size += len(payload)
            while shard.size > shard.capacity:
                oldest_key = next(iter(shard.entries))
                shard.drop(oldest_key)
                evicted += 1
        if evicted:
            with self._counter_lock:
                self._evictions += evicted
        return True

    def _reject(self, sender_id: str, reason: str) -> None:
        with self._counter_lock:
            self._rejections += 1
        self._record("session_memory_rejected", {"sender_id": sender_id, "reason": reason})

    def sweep_expired(self) -> int:
        """Delete expired entries from every shard. Returns how many were removed."""
        now = self._clock()
        removed = 0
        for shard in self._shards:
            with shard.lock:
                expired = [k for k, v in shard.entries.items() if self._expired(v, now)]
                for key in expired:
                    shard.drop(key)
                removed += len(expired)
        return removed

    def __len__(self) -> int:
        total = 0
        for shard in self._shards:
            with shard.lock:
                total += len(shard.entries)
        return total

    def stats(self) -> dict[str, Any]:
        entries = 0
        size = 0
        for shard in self._shards:
            with shard.lock:
                entries += len(shard.entries)
                size += shard.size
        with self._counter_lock:
            evictions, rejections = self._evictions, self._rejections
        return {
            "entries": entries,
            "size_bytes": size,
            "hard_max_bytes": self._hard_max_bytes,
            "max_entry_bytes": self._max_entry_bytes,
            "life_window_seconds": self._life_window,
            "shards": len(self._shards),
            "evictions": evictions,
            "rejections": rejections,
        }
