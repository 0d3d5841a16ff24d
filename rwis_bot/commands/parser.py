"""Typed commands decoded from the language model's JSON output."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Union

TYPE_CHAT = "chat"
TYPE_PERSONAL_DATA_REQUEST = "personal_data_request"
TYPE_ISSUE_REPORT = "issue_report"

# Tags the model is allowed to emit but no handler serves yet.
UNSUPPORTED_TYPES = frozenset(
    {
        "rw_data_request",
        "fund_data_request",
        "umkm_data_request",
        "broadcast_request",
        "rt_data_request",
        "reminder_request",
    }
)


class ParseError(ValueError):
    """Raised when model output is not a well-formed command."""


@dataclass(frozen=True)
class ChatReply:
    value: str


@dataclass(frozen=True)
class PersonalDataRequest:
    include: str


@dataclass(frozen=True)
class IssueReport:
    value: str
    title: str
    description: str


@dataclass(frozen=True)
class UnsupportedRequest:
    kind: str
    fields: dict[str, Any] = field(default_factory=dict)


Command = Union[ChatReply, PersonalDataRequest, IssueReport, UnsupportedRequest]


def _require_str(data: dict[str, Any], key: str, where: str) -> str:
    value = data.get(key)
    if not isinstance(value, str):
        raise ParseError(f"{where}.{key} must be a string, got {type(value).__name__}")
    return value


def parse_command(raw_text: str) -> Command:
    """Decode one command object. Anything that does not match a known shape raises ParseError."""
    try:
        data = json.loads(raw_text)
    except (TypeError, json.JSONDecodeError) as exc:
        raise ParseError(f"model output is not JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise ParseError(f"model output must be a JSON object, got {type(data).__name__}")

    kind = data.get("type")
    if not isinstance(kind, str):
        raise ParseError("model output has no string 'type' field")

    if kind == TYPE_CHAT:
        return ChatReply(value=_require_str(data, "value", kind))
    if kind == TYPE_PERSONAL_DATA_REQUEST:
        return PersonalDataRequest(include=_require_str(data, "include", kind))
    if kind == TYPE_ISSUE_REPORT:
        meta = data.get("meta")
        if not isinstance(meta, dict):
            raise ParseError(f"{kind}.meta must be an object")
        return IssueReport(
            value=_require_str(data, "value", kind),
            title=_require_str(meta, "title", f"{kind}.meta"),
            description=_require_str(meta, "description", f"{kind}.meta"),
        )
    if kind in UNSUPPORTED_TYPES:
        return UnsupportedRequest(kind=kind, fields={k: v for k, v in data.items() if k != "type"})
    raise ParseError(f"unknown command type: {kind!r}")
