"""HTTP admin server: health, status, event log and operator broadcast."""

from __future__ import annotations

import hmac
import json
import threading
import time
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any, Callable
from urllib import parse

from rwis_bot.intake import normalize_sender
from rwis_bot.memory.episodic_memory import EpisodicEventLog

BROADCAST_PATH = "/api/v1/broadcast"


class AdminServer:
    def __init__(
        self,
        *,
        host: str,
        port: int,
        profile_name: str,
        event_log: EpisodicEventLog,
        broadcast: Callable[[str, str], None],
        broadcast_token: str | None,
        status_provider: Callable[[], dict[str, Any]] | None = None,
        issues_provider: Callable[[], list[dict[str, Any]]] | None = None,
    ) -> None:
        self._host = host
        self._port = port
        self._profile_name = profile_name
        self._event_log = event_log
        self._broadcast = broadcast
        self._broadcast_token = broadcast_token
        self._status_provider = status_provider or (lambda: {})
        self._issues_provider = issues_provider
        self._started_at = time.time()
        self._thread: threading.Thread | None = None
        self._httpd: ThreadingHTTPServer | None = None

    @property
    def port(self) -> int:
        if self._httpd is not None:
            return int(self._httpd.server_address[1])
        return self._port

    def start(self) -> None:
        handler_cls = self._build_handler()
        self._httpd = ThreadingHTTPServer((self._host, self._port), handler_cls)
        self._thread = threading.Thread(target=self._httpd.serve_forever, daemon=True)
        self._thread.start()

    def stop(self) -> None:
        if self._httpd is not None:
            self._httpd.shutdown()
            self._httpd.server_close()
        if self._thread is not None:
            self._thread.join(timeout=2)
        self._httpd = None
        self._thread = None

    def _build_handler(self) -> type[BaseHTTPRequestHandler]:
        profile_name = self._profile_name
        event_log = self._event_log
        broadcast = self._broadcast
        broadcast_token = self._broadcast_token
        status_provider = self._status_provider
        issues_provider = self._issues_provider
        started_at = self._started_at

        class Handler(BaseHTTPRequestHandler):
            def do_GET(self) -> None:  # noqa: N802
                path = self.path.split("?")[0]
                if path == "/health":
                    self._write_json(
                        200,
                        {
                            "status": "ok",
                            "profile": profile_name,
                            "uptime": int(time.time() - started_at),
                        },
                    )
                    return

                if path == "/status":
                    self._write_json(200, {"profile": profile_name, **status_provider()})
                    return

                if path == "/logs":
                    self._write_json(200, {"events": event_log.latest(limit=200)})
                    return

                if path == "/issues":
                    if issues_provider is None:
                        self._write_json(404, {"error": "Issue tracker disabled"})
                        return
                    self._write_json(200, {"issues": issues_provider()})
                    return

                self._write_json(404, {"error": "Not found"})

            def do_POST(self) -> None:  # noqa: N802
                url = parse.urlsplit(self.path)
                if url.path != BROADCAST_PATH:
                    self._write_json(404, {"error": "Not found"})
                    return
                if not self._authorized():
                    event_log.record("broadcast_denied", {"reason": "bad_token"}, decision="deny")
                    self._write_json(401, {"error": "Unauthorized"})
                    return
                try:
                    fields = self._read_fields(url.query)
                except (ValueError, json.JSONDecodeError):
                    self._write_json(400, {"error": "Invalid request body"})
                    return
                message = str(fields.get("message") or "").strip()
                number = str(fields.get("number") or "").strip()
                if not message or not number:
                    self._write_json(400, {"error": "Missing message or number"})
                    return
                recipient = normalize_sender(number)
                try:
                    broadcast(recipient, message)
                except Exception as exc:
                    event_log.record(
                        "broadcast_failed",
                        {"recipient": recipient, "error": str(exc)},
                        decision="deny",
                    )
                    self._write_json(500, {"error": "Failed to send message"})
                    return
                event_log.record("broadcast_sent", {"recipient": recipient}, decision="allow")
                self._write_json(200, {"sent": True, "recipient": recipient})

            def _authorized(self) -> bool:
                if not broadcast_token:
                    return False
                header = self.headers.get("Authorization", "")
                return hmac.compare_digest(header, f"Bearer {broadcast_token}")

            def _read_fields(self, query: str) -> dict[str, Any]:
                # Query parameters first, body fields override them.
                fields: dict[str, Any] = {k: v[0] for k, v in parse.parse_qs(query).items()}
                content_len = int(self.headers.get("Content-Length", 0))
                if content_len <= 0:
                    return fields
                body = self.rfile.read(content_len).decode("utf-8")
                content_type = self.headers.get("Content-Type", "")
                if content_type.startswith("application/json"):
                    data = json.loads(body) if body else {}
                    if not isinstance(data, dict):
                        raise ValueError("JSON body must be an object")
                    fields.update(data)
                else:
                    fields.update({k: v[0] for k, v in parse.parse_qs(body).items()})
                return fields

            def log_message(self, format: str, *args: Any) -> None:  # noqa: A003
                # Keep console output quiet; events are tracked in episodic memory.
                _ = (format, args)
                return

            def _write_json(self, status_code: int, payload: dict[str, Any]) -> None:
                encoded = json.dumps(payload, ensure_ascii=True, default=str).encode("utf-8")
                self.send_response(status_code)
                self.send_header("Content-Type", "application/json")
                self.send_header("Content-Length", str(len(encoded)))
                self.end_headers()
                self.wfile.write(encoded)

        return Handler
