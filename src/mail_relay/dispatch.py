# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Delivery of one message to one web app endpoint.

A web app endpoint sends a single e-mail per GET request, taking the
recipient, sender and subject as query parameters. The deliverer turns the
HTTP exchange into a :mod:`mail_relay.outcome` value:

- 2xx/3xx: ``Delivered``
- 429: ``QuotaExceeded``
- any other status, timeout or connection error: ``OtherFailure``

Example:
    Sending through an endpoint::

        deliverer = WebAppDeliverer(timeout=30)
        outcome = await deliverer.deliver(
            "https://script.google.com/macros/s/.../exec",
            OutboundEmail(to="dest@example.com", subject="Hi", from_name="Me"),
        )
        await deliverer.close()
"""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass

import aiohttp

from .logger import get_logger
from .outcome import Delivered, DeliveryOutcome, OtherFailure, QuotaExceeded

DEFAULT_DELIVERY_TIMEOUT = 30.0
QUOTA_STATUS = 429

logger = get_logger("Dispatch")


@dataclass(frozen=True)
class OutboundEmail:
    """A rendered message ready for delivery."""

    to: str
    subject: str
    from_name: str

    def as_params(self) -> dict[str, str]:
        return {"to": self.to, "from": self.from_name, "subject": self.subject}


class DelivererBase:
    """Interface of the delivery capability used by the relay core."""

    async def deliver(self, address: str, email: OutboundEmail) -> DeliveryOutcome:
        """Deliver ``email`` through the endpoint at ``address``.

        Implementations must return within a bounded time and never raise
        for delivery problems; they report them as ``OtherFailure``.
        """
        raise NotImplementedError

    async def close(self) -> None:
        return None


def classify_status(status: int, detail: str = "") -> DeliveryOutcome:
    """Map an endpoint HTTP status to a delivery outcome."""
    if status == QUOTA_STATUS:
        return QuotaExceeded(detail or "endpoint rate limit reached")
    if status < 400:
        return Delivered(status=status)
    return OtherFailure(detail or f"HTTP {status}", status=status)


def _extract_detail(text: str) -> str:
    try:
        body = json.loads(text)
    except ValueError:
        body = None
    if isinstance(body, dict) and body.get("error"):
        return str(body["error"])
    return text.strip()[:200]


class WebAppDeliverer(DelivererBase):
    """aiohttp-based deliverer for web app endpoints.

    Attributes:
        timeout: Total seconds allowed for one delivery request.
    """

    def __init__(self, timeout: float = DEFAULT_DELIVERY_TIMEOUT, session: aiohttp.ClientSession | None = None):
        self.timeout = float(timeout)
        self._session = session
        self._owns_session = session is None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.timeout))
            self._owns_session = True
        return self._session

    async def deliver(self, address: str, email: OutboundEmail) -> DeliveryOutcome:
        session = self._get_session()
        try:
            async with session.get(
                address,
                params=email.as_params(),
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            ) as resp:
                if resp.status < 400:
                    return Delivered(status=resp.status)
                text = (await resp.read()).decode("utf-8", errors="replace")
                return classify_status(resp.status, _extract_detail(text))
        except asyncio.TimeoutError:
            logger.error("Delivery to %s timed out after %.1fs", email.to, self.timeout)
            return OtherFailure(f"timeout after {self.timeout:.0f}s")
        except aiohttp.ClientError as exc:
            logger.error("Delivery to %s failed: %s", email.to, exc)
            return OtherFailure(str(exc) or exc.__class__.__name__)

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None
