"""Minimal Gemini generateContent client and the gateway the bot talks to."""

from __future__ import annotations

import http.client
import json
from pathlib import Path
from typing import Any, Sequence
from urllib import error, parse, request

from rwis_bot.commands.prompt import ACKNOWLEDGEMENT_REPLY, COMMAND_SCHEMA_PROMPT
from rwis_bot.memory.session_store import ROLE_MODEL, ROLE_USER, ConversationTurn

DEFAULT_MODEL = "gemini-pro"
GEMINI_BASE = "https://generativelanguage.googleapis.com/v1beta"
DEFAULT_TIMEOUT_SECONDS = 60
MAX_OUTPUT_TOKENS = 512

SAFETY_CATEGORIES = (
    "HARM_CATEGORY_HARASSMENT",
    "HARM_CATEGORY_HATE_SPEECH",
    "HARM_CATEGORY_SEXUALLY_EXPLICIT",
    "HARM_CATEGORY_DANGEROUS_CONTENT",
)
SAFETY_THRESHOLD = "BLOCK_MEDIUM_AND_ABOVE"


class LlmError(RuntimeError):
    """Raised when the language backend cannot produce an answer."""


def read_secret(secrets_dir: Path, filename: str) -> str | None:
    """Read first line of a secret file; return None if missing or empty."""
    path = secrets_dir / filename
    if not path.exists():
        return None
    raw = path.read_text(encoding="utf-8").strip()
    return raw if raw else None


def content_from_text(role: str, text: str) -> dict[str, Any]:
    return {"role": role, "parts": [{"text": text}]}


def build_contents(prior_turns: Sequence[ConversationTurn], new_message: str) -> list[dict[str, Any]]:
    contents = [
        content_from_text(ROLE_USER, COMMAND_SCHEMA_PROMPT),
        content_from_text(ROLE_MODEL, ACKNOWLEDGEMENT_REPLY),
    ]
    contents.extend(content_from_text(turn.role, turn.text) for turn in prior_turns)
    contents.append(content_from_text(ROLE_USER, new_message))
    return contents


def build_request_body(contents: list[dict[str, Any]], *, max_tokens: int = MAX_OUTPUT_TOKENS) -> dict[str, Any]:
    return {
        "contents": contents,
        "safetySettings": [
            {"category": category, "threshold": SAFETY_THRESHOLD} for category in SAFETY_CATEGORIES
        ],
        "generationConfig": {"maxOutputTokens": max_tokens},
    }


def _first_text(data: dict[str, Any]) -> str:
    candidates = data.get("candidates") or []
    if not candidates:
        return ""
    parts = (candidates[0].get("content") or {}).get("parts") or []
    if not parts:
        return ""
    return str(parts[0].get("text") or "")


def generate_content(
    contents: list[dict[str, Any]],
    api_key: str,
    *,
    base_url: str | None = None,
    model: str = DEFAULT_MODEL,
    api_token: str | None = None,
    project_id: str | None = None,
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
) -> str:
    """
    Call the Gemini generateContent endpoint once.
    Returns the first candidate's first text part, or "" when the response carries none.
    Raises LlmError on HTTP, transport, timeout or decoding failures.
    """
    url = (
        f"{(base_url or GEMINI_BASE).rstrip('/')}/models/{model}:generateContent"
        f"?{parse.urlencode({'key': api_key})}"
    )
    encoded = json.dumps(build_request_body(contents)).encode("utf-8")
    headers: dict[str, str] = {
        "Accept": "application/json",
        "Content-Type": "application/json",
    }
    if api_token:
        headers["Authorization"] = f"Bearer {api_token}"
    if project_id:
        headers["X-Goog-User-Project"] = project_id
    req = request.Request(url, data=encoded, headers=headers, method="POST")
    try:
        with request.urlopen(req, timeout=timeout) as response:  # noqa: S310
            data = json.loads(response.read().decode("utf-8"))
    except error.HTTPError as exc:
        body_read = exc.read().decode("utf-8", errors="replace")
        raise LlmError(f"Gemini API HTTP {exc.code}: {body_read}") from exc
    except (error.URLError, TimeoutError, OSError, http.client.HTTPException) as exc:
        raise LlmError(f"Gemini API unreachable: {exc}") from exc
    except ValueError as exc:
        raise LlmError(f"Gemini API returned invalid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise LlmError(f"Gemini API unexpected response: {data}")
    return _first_text(data)


class LanguageGateway:
    """Wraps every model call in the fixed instruction preamble."""

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str | None = None,
        model: str = DEFAULT_MODEL,
        api_token: str | None = None,
        project_id: str | None = None,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        self._api_key = api_key
        self._base_url = base_url
        self._model = model
        self._api_token = api_token
        self._project_id = project_id
        self._timeout = timeout_seconds

    @property
    def model(self) -> str:
        return self._model

    @property
    def timeout_seconds(self) -> float:
        return self._timeout

    def complete(self, prior_turns: Sequence[ConversationTurn], new_message: str) -> str:
        text = generate_content(
            build_contents(prior_turns, new_message),
            self._api_key,
            base_url=self._base_url,
            model=self._model,
            api_token=self._api_token,
            project_id=self._project_id,
            timeout=self._timeout,
        )
        if not text.strip():
            raise LlmError("Gemini API returned no candidate text")
        return text
