"""Push gateway client for the Expo push API.

Stateless translation of an ordered batch of messages into one HTTP
POST and of the response back into per-message receipts. No retries:
the queue processor owns retry, so any transport or format problem is
raised as a single GatewayError for the whole batch.
"""

import json
import logging
import time
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol

import httpx

from ..config import settings
from ..errors import GatewayError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PushMessage:
    device_token: str
    title: str
    body: str
    data: dict[str, Any] = field(default_factory=dict)
    channel: str = "default"

    def to_wire(self) -> dict:
        return {
            "to": self.device_token,
            "title": self.title,
            "body": self.body,
            "data": self.data,
            "channelId": self.channel,
        }


@dataclass(frozen=True)
class Receipt:
    status: str
    id: str | None = None
    message: str | None = None
    details: dict[str, Any] | None = None

    @property
    def ok(self) -> bool:
        return self.status == "ok"

    @property
    def error_message(self) -> str:
        if self.message:
            return self.message
        if self.details and self.details.get("error"):
            return str(self.details["error"])
        return "Unknown error"

    @classmethod
    def from_wire(cls, raw: Any) -> "Receipt":
        if not isinstance(raw, dict):
            return cls(status="error", message="Malformed receipt")
        details = raw.get("details")
        return cls(
            status=str(raw.get("status", "error")),
            id=raw.get("id"),
            message=raw.get("message"),
            details=details if isinstance(details, dict) else None,
        )


class PushGateway(Protocol):
    """Gateway interface used by the queue processor."""

    def send(self, batch: Sequence[PushMessage]) -> list[Receipt]:
        """Send one batch. Receipts come back in batch order.

        httpx applies `timeout` to each phase (connect, write, every read)
        separately, so the body is streamed and the whole call is also held
        to a total deadline of the same length. A gateway that trickles
        bytes is cut off at the first chunk that arrives past the deadline.
        """
        if not batch:
            return []

        deadline = time.monotonic() + self._deadline
        try:
            with self._client.stream("POST", self._url, json=[m.to_wire() for m in batch]) as response:
                if not response.is_success:
                    raise GatewayError(f"Push gateway error: {response.status_code} {response.reason_phrase}")
                content = self._read_body(response, deadline)
        except httpx.TimeoutException as exc:
            raise GatewayError(f"Push gateway timed out: {exc}") from exc
        except httpx.HTTPError as exc:
            raise GatewayError(f"Push gateway request failed: {exc}") from exc

        try:
            payload = json.loads(content)
        except ValueError as exc:
            raise GatewayError("Malformed JSON from push gateway") from exc

        data = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(data, list):
            raise GatewayError("No receipts received from push gateway")

        logger.debug("Push gateway returned %d receipts for %d messages", len(data), len(batch))
        return [Receipt.from_wire(r) for r in data]

    def _read_body(self, response: httpx.Response, deadline: float) -> bytes:
        chunks = []
        for chunk in response.iter_bytes():
            chunks.append(chunk)
            if time.monotonic() > deadline:
                raise GatewayError(f"Push gateway timed out: no complete response within {self._deadline}s")
        return b"".join(chunks)

    def close(self) -> None:
        self._client.close()
