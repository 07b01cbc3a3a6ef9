"""Tests for relay data models."""

import pytest

from relay.models import OutboundMessage, SendReceipt, TimeSyncReply


class TestOutboundMessage:
    def test_payload_omits_empty_html(self):
        payload = OutboundMessage("a@b.c", "Receipt", "Body").to_payload()
        assert payload == {"to": "a@b.c", "subject": "Receipt", "text": "Body"}

    def test_payload_includes_html(self):
        payload = OutboundMessage("a@b.c", "Receipt", "Body", "<p>Body</p>").to_payload()
        assert payload["html"] == "<p>Body</p>"

    def test_missing_fields(self):
        assert OutboundMessage("  ", "", "text").missing_fields() == ["to", "subject"]
        assert OutboundMessage("a@b.c", "s", "t").missing_fields() == []

    def test_from_dict_tolerates_none(self):
        message = OutboundMessage.from_dict({"to": "a@b.c", "subject": None, "text": 5})
        assert message.subject == ""
        assert message.text == "5"
        assert message.html == ""


class TestSendReceipt:
    def test_from_api_full(self):
        receipt = SendReceipt.from_api(
            {"message": "Email sent successfully", "info": {"messageId": "<x@y>", "accepted": ["a@b.c"]}}
        )
        assert receipt.message == "Email sent successfully"
        assert receipt.message_id == "<x@y>"
        assert receipt.info["accepted"] == ["a@b.c"]

    def test_from_api_string_info(self):
        """Some transports report a plain response line instead of an object."""
        receipt = SendReceipt.from_api({"message": "ok", "info": "250 Accepted"})
        assert receipt.info == {"response": "250 Accepted"}
        assert receipt.message_id == ""

    def test_from_api_empty_dict(self):
        receipt = SendReceipt.from_api({})
        assert receipt.message == ""
        assert receipt.info == {}


class TestTimeSyncReply:
    def test_long_form_fields(self):
        reply = TimeSyncReply.from_api(
            {
                "clientSendTs": 1000,
                "serverReceiveTs": 1100,
                "serverSendTs": 1101,
                "stratum": 2,
                "serverTimeIso": "2026-01-01T00:00:01.101Z",
            },
            t4=1010,
        )
        assert reply.offset_ms == 95.5
        assert reply.round_trip_ms == 9
        assert reply.as_result() == {
            "offset_ms": 95.5,
            "round_trip_ms": 9,
            "stratum": 2,
            "server_time": "2026-01-01T00:00:01.101Z",
        }

    def test_short_form_fields(self):
        reply = TimeSyncReply.from_api({"t1": "10", "t2": "30", "t3": "30", "serverTime": "T"}, t4=20)
        assert reply.offset_ms == 15.0
        assert reply.round_trip_ms == 10.0
        assert reply.server_time == "T"

    def test_missing_timestamp_raises(self):
        with pytest.raises(ValueError):
            TimeSyncReply.from_api({"t1": 1, "t2": 2}, t4=3)
