"""Profile configuration loader and path resolver."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from rwis_bot.memory import session_store


@dataclass(frozen=True)
class ProfilePaths:
    base_data_dir: Path
    db_path: Path
    secrets_dir: Path


@dataclass(frozen=True)
class SessionMemoryConfig:
    shards: int = session_store.DEFAULT_SHARDS
    life_window_seconds: int = session_store.DEFAULT_LIFE_WINDOW_SECONDS
    max_entry_bytes: int = session_store.DEFAULT_MAX_ENTRY_BYTES
    hard_max_bytes: int = session_store.DEFAULT_HARD_MAX_BYTES
    max_turns: int = 10


@dataclass(frozen=True)
class Profile:
    name: str
    display_name: str
    admin_host: str
    admin_port: int
    llm_model: str
    llm_timeout_seconds: int
    handler_timeout_seconds: int
    session_memory: SessionMemoryConfig
    paths: ProfilePaths


class ProfileError(ValueError):
    """Raised when profile configuration is invalid."""


def _clamp(raw: Any, default: int, low: int, high: int, key: str) -> int:
    if raw is None:
        return default
    try:
        value = int(raw)
    except (TypeError, ValueError) as exc:
        raise ProfileError(f"{key} must be an integer, got {raw!r}") from exc
    return max(low, min(high, value))


def _validate_raw_profile(raw: dict[str, Any], expected_name: str) -> None:
    required = {"name", "display_name"}
    missing = required.difference(raw.keys())
    if missing:
        missing_joined = ", ".join(sorted(missing))
        raise ProfileError(f"Missing required profile keys: {missing_joined}")

    if raw["name"] != expected_name:
        raise ProfileError(
            f"Profile filename/name mismatch: expected '{expected_name}', got '{raw['name']}'"
        )

    if "session_memory" in raw and not isinstance(raw["session_memory"], dict):
        raise ProfileError("session_memory must be a mapping")


def _session_memory(raw: dict[str, Any]) -> SessionMemoryConfig:
    defaults = SessionMemoryConfig()
    shards = _clamp(raw.get("shards"), defaults.shards, 1, 65536, "session_memory.shards")
    max_entry = _clamp(
        raw.get("max_entry_bytes"), defaults.max_entry_bytes, 256, 1024 * 1024, "session_memory.max_entry_bytes"
    )
    hard_max = _clamp(
        raw.get("hard_max_bytes"), defaults.hard_max_bytes, 1024, 4 * 1024 ** 3, "session_memory.hard_max_bytes"
    )
    if hard_max // shards < max_entry:
        raise ProfileError(
            "session_memory.hard_max_bytes / shards must be at least session_memory.max_entry_bytes"
        )
    return SessionMemoryConfig(
        shards=shards,
        life_window_seconds=_clamp(
            raw.get("life_window_seconds"), defaults.life_window_seconds, 30, 24 * 3600,
            "session_memory.life_window_seconds",
        ),
        max_entry_bytes=max_entry,
        hard_max_bytes=hard_max,
        max_turns=_clamp(raw.get("max_turns"), defaults.max_turns, 1, 50, "session_memory.max_turns"),
    )


def load_profile(profile_name: str, repo_root: Path | None = None, data_root: Path | None = None) -> Profile:
    """Load a profile from config and resolve data paths."""
    if repo_root is None:
        repo_root = Path(__file__).resolve().parent.parent

    profile_path = repo_root / "config" / "profiles" / f"{profile_name}.yaml"
    if not profile_path.exists():
        raise ProfileError(f"Profile not found: {profile_path}")

    with profile_path.open("r", encoding="utf-8") as fh:
        raw = yaml.safe_load(fh) or {}

    if not isinstance(raw, dict):
        raise ProfileError(f"Profile file must contain a mapping: {profile_path}")

    _validate_raw_profile(raw, profile_name)

    base_data_dir = (data_root or Path.home() / "rwisdata") / profile_name
    paths = ProfilePaths(
        base_data_dir=base_data_dir,
        db_path=base_data_dir / "rwis.db",
        secrets_dir=base_data_dir / "secrets",
    )

    return Profile(
        name=raw["name"],
        display_name=raw["display_name"],
        admin_host=str(raw.get("admin_host", "0.0.0.0")),
        admin_port=_clamp(raw.get("admin_port"), 8080, 1, 65535, "admin_port"),
        llm_model=str(raw.get("llm_model", "gemini-pro")).strip() or "gemini-pro",
        llm_timeout_seconds=_clamp(raw.get("llm_timeout_seconds"), 60, 5, 120, "llm_timeout_seconds"),
        handler_timeout_seconds=_clamp(raw.get("handler_timeout_seconds"), 60, 1, 120, "handler_timeout_seconds"),
        session_memory=_session_memory(raw.get("session_memory") or {}),
        paths=paths,
    )


def ensure_profile_directories(profile: Profile) -> None:
    """Create profile directories without touching existing data."""
    profile.paths.base_data_dir.mkdir(parents=True, exist_ok=True)
    profile.paths.secrets_dir.mkdir(parents=True, exist_ok=True)
