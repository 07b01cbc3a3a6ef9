"""Data models for the notification relay and time-sync endpoint."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return str(value)


def _as_ms(value: Any) -> float:
    if value is None or value == "":
        raise ValueError("missing timestamp")
    return float(value)


def _first(data: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return None


@dataclass
class OutboundMessage:
    to: str
    subject: str
    text: str
    html: str = ""

    def missing_fields(self) -> list[str]:
        return [name for name in ("to", "subject", "text") if not getattr(self, name).strip()]

    def to_payload(self) -> dict[str, str]:
        payload = {"to": self.to.strip(), "subject": self.subject, "text": self.text}
        if self.html:
            payload["html"] = self.html
        return payload

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> OutboundMessage:
        return cls(
            to=_as_text(data.get("to")),
            subject=_as_text(data.get("subject")),
            text=_as_text(data.get("text")),
            html=_as_text(data.get("html")),
        )


@dataclass
class SendReceipt:
    message: str = ""
    message_id: str = ""
    info: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_api(cls, data: dict) -> SendReceipt:
        info = data.get("info", {})
        if not isinstance(info, dict):
            info = {"response": _as_text(info)}
        return cls(
            message=_as_text(data.get("message", "")),
            message_id=_as_text(info.get("messageId", info.get("message_id", ""))),
            info=info,
        )


@dataclass
class TimeSyncReply:
    """One request/response exchange with the time server.

    ``t1`` and ``t4`` are stamped by the client when the request leaves and
    the reply arrives. ``t2`` and ``t3`` are stamped by the server when the
    request arrives and the reply leaves. All are epoch milliseconds.
    """

    t1: float
    t2: float
    t3: float
    t4: float = 0.0
    stratum: int = 0
    server_time: str = ""

    @classmethod
    def from_api(cls, data: dict, t4: float = 0.0) -> TimeSyncReply:
        return cls(
            t1=_as_ms(_first(data, "clientSendTs", "t1")),
            t2=_as_ms(_first(data, "serverReceiveTs", "t2")),
            t3=_as_ms(_first(data, "serverSendTs", "t3")),
            t4=t4,
            stratum=int(_first(data, "stratum") or 0),
            server_time=_as_text(_first(data, "serverTimeIso", "serverTime")),
        )

    @property
    def offset_ms(self) -> float:
        return ((self.t2 - self.t1) + (self.t3 - self.t4)) / 2

    @property
    def round_trip_ms(self) -> float:
        return (self.t4 - self.t1) - (self.t3 - self.t2)

    def as_result(self) -> dict[str, Any]:
        return {
            "offset_ms": self.offset_ms,
            "round_trip_ms": self.round_trip_ms,
            "stratum": self.stratum,
            "server_time": self.server_time,
        }
