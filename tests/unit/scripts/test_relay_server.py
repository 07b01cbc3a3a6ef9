"""Tests for the relay service helpers and handler."""

from __future__ import annotations

import smtplib
import threading
from http.server import ThreadingHTTPServer

import httpx
import pytest

from relay.models import OutboundMessage
from scripts.relay_server import RelayContext, RelayHandler, SmtpSender, build_time_reply, validate_send_request


class TestValidateSendRequest:
    def test_complete_request(self):
        message, problem = validate_send_request({"to": "a@b.c", "subject": "s", "text": "t", "html": "<b>t</b>"})
        assert problem is None
        assert message.html == "<b>t</b>"

    def test_missing_fields(self):
        message, problem = validate_send_request({"to": "a@b.c"})
        assert message is None
        assert problem == {"error": "Missing required fields", "details": "subject, text"}


class TestBuildTimeReply:
    def test_echoes_client_stamp(self):
        reply = build_time_reply({"t0": ["1000.500"]}, 1100.0, clock=lambda: 1101.0)
        assert reply["clientSendTs"] == 1000.5
        assert reply["serverReceiveTs"] == 1100.0
        assert reply["serverSendTs"] == 1101.0
        assert reply["stratum"] == 2
        assert reply["serverTimeIso"].startswith("1970-01-01T00:00:01.101")

    def test_bad_client_stamp_is_null(self):
        reply = build_time_reply({"t0": ["yesterday"]}, 5.0, clock=lambda: 6.0)
        assert reply["clientSendTs"] is None
        assert build_time_reply({}, 5.0, clock=lambda: 6.0)["clientSendTs"] is None


def test_smtp_sender_requires_credentials():
    with pytest.raises(RuntimeError, match="credentials"):
        SmtpSender("", "")(OutboundMessage("a@b.c", "s", "t"))


@pytest.fixture
def relay():
    sent: list[OutboundMessage] = []

    def _send(message: OutboundMessage) -> dict:
        if message.to == "bounce@example.com":
            raise smtplib.SMTPRecipientsRefused({message.to: (550, b"no such user")})
        sent.append(message)
        return {"messageId": "<fake@relay>"}

    handler = type("TestRelayHandler", (RelayHandler,), {"ctx": RelayContext(send=_send, clock=lambda: 42.0)})
    server = ThreadingHTTPServer(("127.0.0.1", 0), handler)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    client = httpx.Client(base_url=f"http://127.0.0.1:{server.server_address[1]}", trust_env=False)
    try:
        yield client, sent
    finally:
        client.close()
        server.shutdown()
        server.server_close()


class TestRelayHandler:
    def test_send_email(self, relay):
        client, sent = relay
        resp = client.post("/api/send-email", json={"to": "a@b.c", "subject": "s", "text": "t"})
        assert resp.status_code == 200
        assert resp.json() == {"message": "Email sent successfully", "info": {"messageId": "<fake@relay>"}}
        assert resp.headers["access-control-allow-origin"] == "*"
        assert sent[0].to == "a@b.c"

    def test_send_email_missing_fields(self, relay):
        client, sent = relay
        resp = client.post("/api/send-email", json={"to": "a@b.c"})
        assert resp.status_code == 400
        assert resp.json()["error"] == "Missing required fields"
        assert sent == []

    def test_send_email_invalid_json(self, relay):
        client, _ = relay
        resp = client.post(
            "/api/send-email", content=b"{not json", headers={"Content-Type": "application/json"}
        )
        assert resp.status_code == 400
        assert resp.json() == {"error": "invalid_json"}

    def test_send_failure_is_500(self, relay):
        client, _ = relay
        resp = client.post("/api/send-email", json={"to": "bounce@example.com", "subject": "s", "text": "t"})
        assert resp.status_code == 500
        assert resp.json()["error"] == "Failed to send email"
        assert resp.json()["details"]

    def test_time_endpoint(self, relay):
        client, _ = relay
        resp = client.get("/api/ntp", params={"t0": "40.000"})
        assert resp.status_code == 200
        body = resp.json()
        assert body["clientSendTs"] == 40.0
        assert body["serverReceiveTs"] == 42.0
        assert body["serverSendTs"] == 42.0

    def test_unknown_path(self, relay):
        client, _ = relay
        assert client.get("/api/nope").status_code == 404
        assert client.post("/api/nope", json={}).status_code == 404

    def test_preflight(self, relay):
        client, _ = relay
        resp = client.options("/api/send-email")
        assert resp.status_code == 204
        assert "POST" in resp.headers["access-control-allow-methods"]
