"""RWIS bot runtime entry point."""

from __future__ import annotations

import argparse
import sys
import threading
from pathlib import Path

from rwis_bot.commands.dispatcher import Dispatcher
from rwis_bot.domain.issues import IssueTracker
from rwis_bot.domain.residents import ResidentDirectory
from rwis_bot.health.server import AdminServer
from rwis_bot.intake import IntakeRouter
from rwis_bot.llm import LanguageGateway, read_secret
from rwis_bot.memory.engine import MemoryEngine
from rwis_bot.memory.episodic_memory import EpisodicEventLog
from rwis_bot.memory.session_store import SessionMemoryStore
from rwis_bot.profile import ProfileError, ensure_profile_directories, load_profile
from rwis_bot.telegram_bot import TelegramBot

SWEEP_INTERVAL_SECONDS = 60


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run the RWIS chat gateway")
    parser.add_argument("--profile", required=True, help="Profile name, e.g. rwis")
    parser.add_argument(
        "--repo-root",
        default=None,
        help="Optional repo root override for config loading",
    )
    parser.add_argument(
        "--data-root",
        default=None,
        help="Optional override for the data directory root (default ~/rwisdata)",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    repo_root = Path(args.repo_root).resolve() if args.repo_root else None
    data_root = Path(args.data_root).resolve() if args.data_root else None
    try:
        profile = load_profile(args.profile, repo_root=repo_root, data_root=data_root)
    except ProfileError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1
    ensure_profile_directories(profile)

    secrets = profile.paths.secrets_dir
    telegram_token = read_secret(secrets, "telegram_bot_token.txt")
    gemini_key = read_secret(secrets, "gemini_api_key.txt")
    if telegram_token is None or gemini_key is None:
        missing = [
            name
            for name, value in (("telegram_bot_token.txt", telegram_token), ("gemini_api_key.txt", gemini_key))
            if value is None
        ]
        print(f"error: missing secrets in {secrets}: {', '.join(missing)}", file=sys.stderr)
        return 1

    memory_engine = MemoryEngine(profile.paths.db_path)
    memory_engine.initialize()
    event_log = EpisodicEventLog(profile.paths.db_path)

    memory_cfg = profile.session_memory
    session_store = SessionMemoryStore(
        shards=memory_cfg.shards,
        life_window_seconds=memory_cfg.life_window_seconds,
        max_entry_bytes=memory_cfg.max_entry_bytes,
        hard_max_bytes=memory_cfg.hard_max_bytes,
        event_log=event_log,
    )
    gateway = LanguageGateway(
        gemini_key,
        base_url=read_secret(secrets, "llm_base_url.txt"),
        model=read_secret(secrets, "llm_model.txt") or profile.llm_model,
        api_token=read_secret(secrets, "gemini_api_token.txt"),
        project_id=read_secret(secrets, "gemini_project_id.txt"),
        timeout_seconds=profile.llm_timeout_seconds,
    )
    issues = IssueTracker(profile.paths.db_path)
    dispatcher = Dispatcher(
        residents=ResidentDirectory(profile.paths.db_path),
        issues=issues,
        session_store=session_store,
        event_log=event_log,
        handler_timeout_seconds=profile.handler_timeout_seconds,
        max_turns=memory_cfg.max_turns,
    )

    bot = TelegramBot(token=telegram_token, event_log=event_log, profile_name=profile.name)
    bot.attach(
        IntakeRouter(
            transport=bot,
            gateway=gateway,
            dispatcher=dispatcher,
            session_store=session_store,
            event_log=event_log,
            llm_timeout_seconds=profile.llm_timeout_seconds,
        )
    )

    admin_server = AdminServer(
        host=profile.admin_host,
        port=profile.admin_port,
        profile_name=profile.name,
        event_log=event_log,
        broadcast=bot.send_blocking,
        broadcast_token=read_secret(secrets, "broadcast_token.txt"),
        status_provider=lambda: {"llm_model": gateway.model, "session_memory": session_store.stats()},
        issues_provider=issues.latest,
    )
    admin_server.start()
    stop_sweeper = threading.Event()

    def _sweep_loop() -> None:
        # Expired contexts are also dropped lazily; this bounds idle memory.
        while not stop_sweeper.wait(SWEEP_INTERVAL_SECONDS):
            session_store.sweep_expired()

    sweeper = threading.Thread(target=_sweep_loop, daemon=True)
    sweeper.start()
    event_log.record(
        "agent_boot",
        {"profile": profile.name, "admin_port": profile.admin_port, "llm_model": gateway.model},
        decision="allow",
    )

    try:
        bot.run()
    finally:
        event_log.record("agent_shutdown", {"profile": profile.name}, decision="allow")
        stop_sweeper.set()
        sweeper.join(timeout=2)
        admin_server.stop()
        memory_engine.close()

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
