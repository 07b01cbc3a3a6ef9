"""Thin relay service for the story.

Endpoints:
- POST /api/send-email   {to, subject, text, html?} -> SMTP (Gmail app password)
- GET  /api/ntp?t0=...   time-sync reply with server receive/send stamps

Usage:
    python scripts/relay_server.py --port 3001
"""

from __future__ import annotations

import json
import logging
import smtplib
import sys
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.message import EmailMessage
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path
from typing import Any
from urllib.parse import parse_qs, urlparse

import click

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from engine.config import load_config
from relay.models import OutboundMessage

logger = logging.getLogger(__name__)

SMTP_HOST = "smtp.gmail.com"
SMTP_PORT = 465


def _epoch_ms() -> float:
    return time.time() * 1000.0


def _iso_from_ms(ms: float) -> str:
    return datetime.fromtimestamp(ms / 1000.0, tz=timezone.utc).isoformat(timespec="milliseconds")


def validate_send_request(body: dict[str, Any]) -> tuple[OutboundMessage | None, dict[str, Any] | None]:
    """Return the message to send, or the 400 payload explaining why not."""
    message = OutboundMessage.from_dict(body)
    missing = message.missing_fields()
    if missing:
        return None, {"error": "Missing required fields", "details": ", ".join(missing)}
    return message, None


def build_time_reply(query: dict[str, list[str]], received_ms: float, clock: Callable[[], float] = _epoch_ms) -> dict[str, Any]:
    raw = (query.get("t0") or [""])[0]
    try:
        client_send = float(raw)
    except ValueError:
        client_send = None
    sent_ms = clock()
    return {
        "clientSendTs": client_send,
        "serverReceiveTs": received_ms,
        "serverSendTs": sent_ms,
        "stratum": 2,
        "serverTimeIso": _iso_from_ms(sent_ms),
    }


@dataclass
class SmtpSender:
    user: str
    password: str
    host: str = SMTP_HOST
    port: int = SMTP_PORT

    def __call__(self, message: OutboundMessage) -> dict[str, Any]:
        if not self.user or not self.password:
            raise RuntimeError("SMTP credentials are not configured (GMAIL_USER / GMAIL_APP_PASSWORD)")
        mail = EmailMessage()
        mail["From"] = self.user
        mail["To"] = message.to
        mail["Subject"] = message.subject
        mail.set_content(message.text)
        if message.html:
            mail.add_alternative(message.html, subtype="html")
        with smtplib.SMTP_SSL(self.host, self.port, timeout=20) as smtp:
            smtp.login(self.user, self.password)
            refused = smtp.send_message(mail)
        return {"accepted": [message.to], "rejected": sorted(refused), "messageId": mail.get("Message-ID", "")}


@dataclass
class RelayContext:
    send: Callable[[OutboundMessage], dict[str, Any]]
    clock: Callable[[], float] = field(default=_epoch_ms)


class RelayHandler(BaseHTTPRequestHandler):
    ctx: RelayContext

    def _send_json(self, status: int, payload: dict) -> None:
        body = json.dumps(payload, ensure_ascii=False).encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", "application/json; charset=utf-8")
        self.send_header("Content-Length", str(len(body)))
        self.send_header("Access-Control-Allow-Origin", "*")
        self.end_headers()
        self.wfile.write(body)

    def _read_body_json(self) -> dict[str, Any]:
        length = int(self.headers.get("Content-Length", "0"))
        raw = self.rfile.read(length) if length > 0 else b""
        if not raw:
            return {}
        try:
            data = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise ValueError("invalid_json") from exc
        return data if isinstance(data, dict) else {}

    def do_OPTIONS(self) -> None:
        self.send_response(204)
        self.send_header("Access-Control-Allow-Origin", "*")
        self.send_header("Access-Control-Allow-Methods", "GET, POST, OPTIONS")
        self.send_header("Access-Control-Allow-Headers", "Content-Type")
        self.end_headers()

    def do_GET(self) -> None:
        received = self.ctx.clock()
        parsed = urlparse(self.path)
        if parsed.path == "/api/ntp":
            self._send_json(200, build_time_reply(parse_qs(parsed.query), received, self.ctx.clock))
            return
        self._send_json(404, {"error": "not_found"})

    def do_POST(self) -> None:
        parsed = urlparse(self.path)
        if parsed.path != "/api/send-email":
            self._send_json(404, {"error": "not_found"})
            return

        try:
            body = self._read_body_json()
        except ValueError:
            self._send_json(400, {"error": "invalid_json"})
            return

        message, problem = validate_send_request(body)
        if problem is not None:
            self._send_json(400, problem)
            return

        try:
            info = self.ctx.send(message)
        except (smtplib.SMTPException, OSError, RuntimeError) as exc:
            logger.error("Error sending email: %s", exc)
            self._send_json(500, {"error": "Failed to send email", "details": str(exc)})
            return
        logger.info("Email sent to %s", message.to)
        self._send_json(200, {"message": "Email sent successfully", "info": info})

    def log_message(self, format: str, *args: Any) -> None:
        logger.debug("%s - %s", self.address_string(), format % args)


@click.command()
@click.option("--host", default="127.0.0.1", show_default=True)
@click.option("--port", default=3001, type=int, show_default=True)
@click.option("--config-dir", default=None, type=click.Path(), help="Config directory")
def main(host: str, port: int, config_dir: str | None) -> None:
    cfg = load_config(config_dir)
    logging.basicConfig(level=logging.INFO, format="%(asctime)s — %(name)s — %(levelname)s — %(message)s")

    secrets = cfg.get("_secrets", {})
    RelayHandler.ctx = RelayContext(send=SmtpSender(secrets.get("smtp_user", ""), secrets.get("smtp_password", "")))

    server = ThreadingHTTPServer((host, port), RelayHandler)
    click.echo(f"Relay listening on http://{host}:{port}")
    if not secrets.get("smtp_user"):
        click.echo("GMAIL_USER is not set: /api/send-email will answer 500.")
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        pass
    finally:
        server.server_close()


if __name__ == "__main__":
    main()
