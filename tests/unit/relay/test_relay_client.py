"""Tests for the relay client against a mocked transport."""

from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from relay import MissingFieldError, OutboundMessage, RelayClient, RelayError


def _run_with(handler, call):
    async def _run():
        async with RelayClient("http://relay/", transport=httpx.MockTransport(handler)) as client:
            return await call(client)

    return asyncio.run(_run())


class TestSendEmail:
    def test_success(self):
        captured = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured["method"] = request.method
            captured["path"] = request.url.path
            captured["body"] = json.loads(request.content)
            return httpx.Response(
                200, json={"message": "Email sent successfully", "info": {"messageId": "<m1@relay>"}}
            )

        message = OutboundMessage(" me@example.com ", "Receipt", "You owe $60")
        receipt = _run_with(handler, lambda c: c.send_email(message))
        assert receipt.message == "Email sent successfully"
        assert receipt.message_id == "<m1@relay>"
        assert captured["method"] == "POST"
        assert captured["path"] == "/api/send-email"
        assert captured["body"] == {"to": "me@example.com", "subject": "Receipt", "text": "You owe $60"}

    def test_missing_fields_are_caught_before_sending(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(200, json={})

        with pytest.raises(MissingFieldError) as excinfo:
            _run_with(handler, lambda c: c.send_email(OutboundMessage("", "Receipt", " ")))
        assert excinfo.value.fields == ["to", "text"]
        assert excinfo.value.status_code == 400
        assert calls == []

    def test_server_error_carries_details(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500, json={"error": "Failed to send email", "details": "535 auth failed"})

        with pytest.raises(RelayError) as excinfo:
            _run_with(handler, lambda c: c.send_email(OutboundMessage("a@b.c", "s", "t")))
        assert str(excinfo.value) == "Failed to send email"
        assert excinfo.value.status_code == 500
        assert excinfo.value.details == "535 auth failed"

    def test_error_without_json_body(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(502, text="Bad gateway")

        with pytest.raises(RelayError, match="HTTP 502"):
            _run_with(handler, lambda c: c.send_email(OutboundMessage("a@b.c", "s", "t")))

    def test_unreachable_relay(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(RelayError, match="unreachable"):
            _run_with(handler, lambda c: c.send_email(OutboundMessage("a@b.c", "s", "t")))


def _clock(*values):
    it = iter(values)
    return lambda: next(it)


class TestQueryTime:
    def test_short_form_reply_without_echo(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"t2": 520.0, "t3": 521.0})

        reply = _run_with(handler, lambda c: c.query_time(_clock(500.0, 540.0)))
        assert reply.t1 == 500.0
        assert reply.t4 == 540.0
        assert reply.offset_ms == 0.5
        assert reply.round_trip_ms == 39.0
        assert reply.stratum == 0

    def test_malformed_reply(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"serverReceiveTs": "soon"})

        with pytest.raises(RelayError, match="Malformed time reply"):
            _run_with(handler, lambda c: c.query_time(_clock(1.0, 2.0)))

    def test_time_endpoint_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(404, json={"error": "Not found"})

        with pytest.raises(RelayError) as excinfo:
            _run_with(handler, lambda c: c.query_time(_clock(1.0, 2.0)))
        assert excinfo.value.status_code == 404
