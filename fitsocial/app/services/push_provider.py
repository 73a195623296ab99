"""
Push delivery provider: the Expo push service.

Expo accepts up to 100 messages per request and answers with one ticket per
message, in order. A ticket either carries ``status == "ok"`` or an error
with ``details.error`` such as ``DeviceNotRegistered`` (the device token is
permanently dead) or ``MessageRateExceeded`` (temporary).

Docs: https://docs.expo.dev/push-notifications/sending-notifications/
"""

import logging
import re
from typing import Any, Dict, List, Optional, Protocol

import httpx
from pydantic import BaseModel, ConfigDict, Field

from fitsocial.app.core.config import Settings
from fitsocial.app.core.reliability import CircuitBreaker, CircuitOpenError

logger = logging.getLogger(__name__)

DEVICE_NOT_REGISTERED = "DeviceNotRegistered"

_BARE_TOKEN_RE = re.compile(r"^[a-z\d]{8}-[a-z\d]{4}-[a-z\d]{4}-[a-z\d]{4}-[a-z\d]{12}$", re.IGNORECASE)


def is_expo_push_token(token: Optional[str]) -> bool:
    """Same acceptance rule as the official Expo server SDKs."""
    if not isinstance(token, str) or not token:
        return False
    if (token.startswith("ExponentPushToken[") or token.startswith("ExpoPushToken[")) and token.endswith("]"):
        return True
    return bool(_BARE_TOKEN_RE.match(token))


class PushMessage(BaseModel):
    """One message for one device, serialized with Expo's field names."""
    model_config = ConfigDict(populate_by_name=True)

    to: str
    title: Optional[str] = None
    body: Optional[str] = None
    data: Dict[str, Any] = Field(default_factory=dict)
    sound: Optional[str] = "default"
    badge: Optional[int] = 1
    priority: str = "high"
    channel_id: Optional[str] = Field(default="default", alias="channelId")

    def to_expo(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class PushTicket(BaseModel):
    """Provider acknowledgement for one message."""
    status: str
    id: Optional[str] = None
    message: Optional[str] = None
    error: Optional[str] = None  # details.error from the provider

    @property
    def is_ok(self) -> bool:
        return self.status == "ok"

    @property
    def is_device_unregistered(self) -> bool:
        return self.status == "error" and self.error == DEVICE_NOT_REGISTERED

    @classmethod
    def from_expo(cls, raw: Dict[str, Any]) -> "PushTicket":
        details = raw.get("details") or {}
        return cls(
            status=raw.get("status", "error"),
            id=raw.get("id"),
            message=raw.get("message"),
            error=details.get("error") if isinstance(details, dict) else None,
        )


class PushProviderError(Exception):
    """The provider could not be reached or rejected the whole request."""


class PushProvider(Protocol):
    """Interface for a batched push provider. Returns one ticket per message, in order."""

    async def send(self, messages: List[PushMessage]) -> List[PushTicket]:
        ...


class ExpoPushClient:
    """
    Expo push HTTP API client.

    Each call opens a short-lived ``httpx.AsyncClient``; the circuit breaker
    instance lives as long as the client so repeated outages short-circuit.
    """

    def __init__(
        self,
        url: str,
        access_token: Optional[str] = None,
        timeout: float = 10.0,
        batch_size: int = 100,
        breaker: Optional[CircuitBreaker] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.url = url
        self.access_token = access_token
        self.timeout = timeout
        self.batch_size = batch_size
        self.breaker = breaker or CircuitBreaker("expo-push")
        self._transport = transport

    @classmethod
    def from_settings(cls, settings: Settings) -> "ExpoPushClient":
        return cls(
            url=settings.expo_push_url,
            access_token=settings.expo_access_token,
            timeout=settings.push_timeout_seconds,
            batch_size=settings.push_batch_size,
            breaker=CircuitBreaker(
                "expo-push",
                failure_threshold=settings.push_failure_threshold,
                reset_timeout=settings.push_reset_timeout_seconds,
            ),
        )

    def _headers(self) -> Dict[str, str]:
        headers = {
            "accept": "application/json",
            "accept-encoding": "gzip, deflate",
            "content-type": "application/json",
        }
        if self.access_token:
            headers["authorization"] = f"Bearer {self.access_token}"
        return headers

    def chunk(self, messages: List[PushMessage]) -> List[List[PushMessage]]:
        return [messages[i:i + self.batch_size] for i in range(0, len(messages), self.batch_size)]

    async def send(self, messages: List[PushMessage]) -> List[PushTicket]:
        """
        Send every chunk and return one ticket per message, in order.

        A chunk the provider rejects becomes error tickets for its messages so
        the tickets of accepted chunks are kept. Raises only when no chunk
        was accepted.
        """
        if not messages:
            return []
        tickets: List[PushTicket] = []
        failure: Optional[Exception] = None
        accepted = False
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            for chunk in self.chunk(messages):
                try:
                    tickets.extend(await self.breaker.call(self._send_chunk, client, chunk))
                    accepted = True
                except (PushProviderError, CircuitOpenError) as e:
                    logger.warning("Expo chunk of %d message(s) failed: %s", len(chunk), e)
                    failure = e
                    tickets.extend(PushTicket(status="error", message=str(e)) for _ in chunk)
        if failure is not None and not accepted:
            raise failure
        return tickets

    async def _send_chunk(self, client: httpx.AsyncClient, chunk: List[PushMessage]) -> List[PushTicket]:
        try:
            resp = await client.post(self.url, json=[m.to_expo() for m in chunk], headers=self._headers())
        except httpx.HTTPError as e:
            raise PushProviderError(f"Expo request failed: {e}") from e

        if resp.status_code != 200:
            raise PushProviderError(f"Expo returned {resp.status_code}: {resp.text[:500]}")

        body = resp.json()
        if body.get("errors"):
            # Request-level errors (e.g. PUSH_TOO_MANY_EXPERIENCE_IDS) reject the whole chunk
            raise PushProviderError(f"Expo rejected request: {body['errors']}")

        data = body.get("data") or []
        if len(data) != len(chunk):
            raise PushProviderError(f"Expo returned {len(data)} tickets for {len(chunk)} messages")

        return [PushTicket.from_expo(raw) for raw in data]
