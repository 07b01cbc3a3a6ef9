"""Async client for the notification relay."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Any

import httpx

from .models import OutboundMessage, SendReceipt, TimeSyncReply

logger = logging.getLogger(__name__)


def epoch_ms() -> float:
    return time.time() * 1000.0


class RelayError(Exception):
    """Raised when the relay returns an error."""

    def __init__(self, message: str, status_code: int = 0, details: str = ""):
        self.status_code = status_code
        self.details = details
        super().__init__(message)


class MissingFieldError(RelayError):
    """Raised before sending when a required field is empty."""

    def __init__(self, fields: list[str]):
        self.fields = fields
        super().__init__(f"Missing required fields: {', '.join(fields)}", status_code=400)


class RelayClient:
    """Async wrapper for the relay service.

    Usage::

        async with RelayClient("http://127.0.0.1:3001") as relay:
            await relay.send_email(OutboundMessage(to, subject, text))
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers={"Content-Type": "application/json"},
            timeout=timeout,
            transport=transport,
        )

    async def __aenter__(self) -> RelayClient:
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    async def close(self) -> None:
        await self._client.aclose()

    # ── Request helpers ─────────────────────────────────────────

    async def _request(self, method: str, path: str, **kwargs: Any) -> dict:
        def _json_or_empty(resp: httpx.Response) -> dict[str, Any]:
            if not resp.content:
                return {}
            try:
                data = resp.json()
            except ValueError:
                return {}
            return data if isinstance(data, dict) else {}

        try:
            resp = await self._client.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            raise RelayError(f"Relay unreachable: {exc}") from exc
        body = _json_or_empty(resp)

        if resp.status_code >= 400:
            raise RelayError(
                body.get("error", f"HTTP {resp.status_code}"),
                status_code=resp.status_code,
                details=str(body.get("details", "")),
            )
        return body

    # ── Notifications ───────────────────────────────────────────

    async def send_email(self, message: OutboundMessage) -> SendReceipt:
        missing = message.missing_fields()
        if missing:
            raise MissingFieldError(missing)
        body = await self._request("POST", "/api/send-email", json=message.to_payload())
        logger.info("Relay accepted message for %s", message.to)
        return SendReceipt.from_api(body)

    # ── Time sync ───────────────────────────────────────────────

    async def query_time(self, clock: Callable[[], float] = epoch_ms) -> TimeSyncReply:
        """One time-sync exchange; ``clock`` stamps the client side."""
        t1 = clock()
        body = await self._request("GET", "/api/ntp", params={"t0": f"{t1:.3f}"})
        t4 = clock()
        if _missing_echo(body):
            body = {**body, "t1": t1}
        try:
            reply = TimeSyncReply.from_api(body, t4=t4)
        except (TypeError, ValueError) as exc:
            raise RelayError(f"Malformed time reply: {exc}") from exc
        logger.debug("Time sync: offset %.1f ms, rtt %.1f ms", reply.offset_ms, reply.round_trip_ms)
        return reply


def _missing_echo(body: dict[str, Any]) -> bool:
    return body.get("clientSendTs") is None and body.get("t1") is None
