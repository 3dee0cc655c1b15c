# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Core orchestration logic for the mail relay.

This module provides the RelayCore class, the single in-process authority
over the usage ledger. Every entry point follows the same cycle:

1. Apply the daily reset policy.
2. Load the endpoint list from the provider.
3. Under the ledger lock, plan the work (one endpoint for a single send, a
   distribution plan for a bulk send) and reserve the planned slots.
4. Dispatch each message outside the lock.
5. Classify the outcome and feed it back into the ledger.

Example:
    Running the relay::

        from mail_relay.core import RelayCore
        from mail_relay.endpoints import RemoteEndpointProvider

        core = RelayCore(provider=RemoteEndpointProvider(file_id="1AbC..."))
        await core.start()
        result = await core.send_single("dest@example.com")
        await core.stop()
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable, Sequence
from datetime import datetime, timezone
from typing import Any

from .config_loader import RelaySettings
from .dispatch import DelivererBase, OutboundEmail, WebAppDeliverer
from .distributor import Assignment, distribute
from .endpoints import EndpointProviderBase, RemoteEndpointProvider
from .errors import DispatchFailure, EndpointQuotaExceeded, NoCapacityAvailable, ProviderUnavailable
from .ledger import DEFAULT_DAILY_LIMIT, UsageLedger
from .logger import get_logger
from .outcome import Delivered, DeliveryOutcome, OtherFailure, QuotaExceeded, apply_outcome
from .prometheus import RelayMetrics
from .reset_policy import DailyResetPolicy
from .selector import DEFAULT_SOFT_THRESHOLD, select_one
from .templating import DEFAULT_FROM_NAME, DEFAULT_SUBJECT_TEMPLATE, decode_from_name, render_subject

DEFAULT_SEND_INTERVAL = 0.1
DEFAULT_MAX_BATCH_SIZE = 500


class RelayCore:
    """Central orchestrator of quota-aware delivery.

    Attributes:
        provider: Source of the ordered endpoint list.
        deliverer: Delivery capability invoked per message.
        ledger: Per-endpoint usage accounting.
        reset_policy: Daily reset decision.
        metrics: Prometheus metrics collector.
        total_sent: Messages delivered since process start.
        total_failed: Messages that failed since process start.
    """

    def __init__(
        self,
        *,
        provider: EndpointProviderBase,
        deliverer: DelivererBase | None = None,
        ledger: UsageLedger | None = None,
        reset_policy: DailyResetPolicy | None = None,
        metrics: RelayMetrics | None = None,
        daily_limit: int = DEFAULT_DAILY_LIMIT,
        soft_threshold: float = DEFAULT_SOFT_THRESHOLD,
        send_interval: float = DEFAULT_SEND_INTERVAL,
        max_batch_size: int = DEFAULT_MAX_BATCH_SIZE,
        subject_template: str = DEFAULT_SUBJECT_TEMPLATE,
        from_name: str = DEFAULT_FROM_NAME,
        clock: Callable[[], datetime] | None = None,
        logger=None,
    ):
        """Initialize the relay core.

        Args:
            provider: Endpoint list provider.
            deliverer: Delivery capability. Defaults to :class:`WebAppDeliverer`.
            ledger: Usage ledger. Defaults to a fresh ledger with ``daily_limit``.
            reset_policy: Daily reset policy.
            metrics: Prometheus metrics collector.
            daily_limit: Per-endpoint daily limit, used when ``ledger`` is None.
            soft_threshold: Fraction of the limit above which single sends
                avoid an endpoint.
            send_interval: Seconds between two dispatches to the same
                endpoint during a bulk send.
            max_batch_size: Maximum addresses in one bulk request.
            subject_template: Subject used when a request has none.
            from_name: Base64 sender name used when a request has none.
            clock: Returns the current local time. Defaults to ``datetime.now``.
            logger: Custom logger instance.
        """
        self._clock = clock or datetime.now
        self.logger = logger or get_logger("RelayCore")
        self.provider = provider
        self.deliverer = deliverer or WebAppDeliverer()
        self.ledger = ledger or UsageLedger(daily_limit, now=self._clock())
        self.reset_policy = reset_policy or DailyResetPolicy()
        self.metrics = metrics or RelayMetrics()
        self.soft_threshold = float(soft_threshold)
        self.send_interval = max(0.0, float(send_interval))
        self.max_batch_size = max(1, int(max_batch_size))
        self.subject_template = subject_template
        self.default_from_name = from_name
        self.total_sent = 0
        self.total_failed = 0
        self._started_at = time.monotonic()

    @classmethod
    def from_settings(cls, settings: RelaySettings, **overrides: Any) -> RelayCore:
        """Build a core wired to the remote provider and web app deliverer."""
        provider = RemoteEndpointProvider(
            file_id=settings.file_id,
            source_url=settings.source_url,
            fallback_path=settings.fallback_path,
            cache_ttl=settings.cache_ttl_seconds,
            timeout=settings.fetch_timeout,
        )
        options: dict[str, Any] = {
            "provider": provider,
            "deliverer": WebAppDeliverer(timeout=settings.delivery_timeout),
            "daily_limit": settings.daily_limit,
            "soft_threshold": settings.soft_threshold,
            "send_interval": settings.send_interval,
            "max_batch_size": settings.max_batch_size,
            "subject_template": settings.subject_template,
            "from_name": settings.from_name,
        }
        options.update(overrides)
        return cls(**options)

    # --------------------------------------------------------------------- utils
    @staticmethod
    def _utc_now_iso() -> str:
        """Return the current UTC timestamp as ISO-8601 string with 'Z' suffix."""
        return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")

    def _apply_daily_reset(self) -> None:
        if self.reset_policy.maybe_reset(self.ledger, self._clock()):
            self.metrics.reset_usage()

    def _available_apps(self, endpoint_count: int) -> int:
        return endpoint_count - sum(1 for ordinal in self.ledger.exhausted if ordinal < endpoint_count)

    def _usage_snapshot(self, endpoint_count: int) -> list[dict[str, Any]]:
        return [entry.to_dict() for entry in self.ledger.snapshot(endpoint_count)]

    def _no_capacity(self, message: str, endpoint_count: int) -> NoCapacityAvailable:
        next_reset = self.reset_policy.next_reset(self._clock())
        return NoCapacityAvailable(
            message,
            next_reset=next_reset.isoformat(),
            webapp_stats=self._usage_snapshot(endpoint_count),
        )

    def _build_email(self, to: str, subject: str | None, from_name: str | None) -> OutboundEmail:
        return OutboundEmail(
            to=to,
            subject=subject or render_subject(self.subject_template, to),
            from_name=from_name or decode_from_name(self.default_from_name),
        )

    async def _dispatch(self, ordinal: int, address: str, email: OutboundEmail) -> tuple[DeliveryOutcome, int]:
        """Deliver one reserved message and apply its outcome to the ledger."""
        try:
            outcome = await self.deliverer.deliver(address, email)
        except asyncio.CancelledError:
            self.ledger.release(ordinal)
            raise
        except Exception as exc:
            self.logger.exception("Unexpected error delivering to %s via WebApp #%d", email.to, ordinal + 1)
            outcome = OtherFailure(str(exc) or exc.__class__.__name__)
        usage = apply_outcome(self.ledger, ordinal, outcome)
        if isinstance(outcome, Delivered):
            self.total_sent += 1
            self.metrics.inc_sent(ordinal, usage)
        else:
            self.total_failed += 1
            self.metrics.inc_error(ordinal)
            if isinstance(outcome, QuotaExceeded):
                self.metrics.inc_quota_exceeded(ordinal)
        self.metrics.set_exhausted(len(self.ledger.exhausted))
        return outcome, usage

    # ----------------------------------------------------------------- lifecycle
    async def start(self) -> None:
        """Warm the endpoint list cache. A failing provider is logged, not fatal."""
        try:
            endpoints = await self.provider.get_endpoints()
            self.logger.info("Relay started with %d WebApp endpoints", len(endpoints))
        except ProviderUnavailable as exc:
            self.logger.error("Initial endpoint load failed: %s", exc)

    async def stop(self) -> None:
        await self.deliverer.close()

    # ------------------------------------------------------------------ commands
    async def handle_command(self, cmd: str, payload: dict[str, Any] | None = None) -> dict[str, Any]:
        """Execute an external command.

        Supported commands:
        - ``sendEmail``: ``{to, subject?, from?}``
        - ``sendBulk``: ``{emails, subject?, from?}``
        - ``stats``, ``reset``, ``refresh``

        Relay errors (no capacity, quota, dispatch, provider) propagate as
        :class:`~mail_relay.errors.RelayError`; invalid payloads come back as
        ``{"ok": False, "error": ...}``.
        """
        payload = payload or {}
        match cmd:
            case "sendEmail":
                to = payload.get("to")
                if not to:
                    return {"ok": False, "error": 'Parameter "to" (email address) is required'}
                return await self.send_single(to, payload.get("subject"), payload.get("from"))
            case "sendBulk":
                emails = payload.get("emails")
                error = self._validate_batch(emails)
                if error:
                    return {"ok": False, "error": error}
                return await self.send_bulk(emails, payload.get("subject"), payload.get("from"))
            case "stats":
                return await self.stats()
            case "reset":
                return self.reset()
            case "refresh":
                return await self.refresh_endpoints()
            case _:
                return {"ok": False, "error": "unknown command"}

    def _validate_batch(self, emails: Any) -> str | None:
        if not emails or not isinstance(emails, list):
            return 'Parameter "emails" must be a non-empty array'
        if len(emails) > self.max_batch_size:
            return f"Maximum {self.max_batch_size} emails per batch request"
        return None

    async def send_single(self, to: str, subject: str | None = None, from_name: str | None = None) -> dict[str, Any]:
        """Send one message through the least-used endpoint.

        Raises:
            NoCapacityAvailable: No endpoint is below the soft threshold.
            EndpointQuotaExceeded: The chosen endpoint reported quota exhaustion.
            DispatchFailure: Delivery failed for another reason.
            ProviderUnavailable: The endpoint list could not be loaded.
        """
        self._apply_daily_reset()
        endpoints = await self.provider.get_endpoints()

        async with self.ledger.lock:
            plan = select_one(self.ledger, endpoints, self.soft_threshold)
            if plan is None:
                raise self._no_capacity(
                    "All WebApps have reached their daily limit or are near capacity. Try again tomorrow.",
                    len(endpoints),
                )
            self.ledger.reserve(plan.ordinal)

        email = self._build_email(to, subject, from_name)
        outcome, usage = await self._dispatch(plan.ordinal, plan.address, email)
        webapp = plan.ordinal + 1

        if isinstance(outcome, QuotaExceeded):
            self.logger.warning("WebApp #%d hit rate limit unexpectedly", webapp)
            raise EndpointQuotaExceeded(
                f"WebApp #{webapp} rate limit reached",
                available_apps=self._available_apps(len(endpoints)),
            )
        if not isinstance(outcome, Delivered):
            self.logger.error("Failed to send to %s: %s", to, outcome.detail)
            raise DispatchFailure("Failed to send email", details=outcome.detail)

        self.logger.info(
            "Email sent to %s via WebApp #%d (Usage: %d/%d)", to, webapp, usage, self.ledger.daily_limit
        )
        return {
            "ok": True,
            "message": "Email sent successfully",
            "data": {
                "to": email.to,
                "subject": email.subject,
                "from": email.from_name,
                "webapp_used": webapp,
                "webapp_usage": usage,
                "webapp_limit": self.ledger.daily_limit,
                "timestamp": self._utc_now_iso(),
            },
            "stats": {
                "total_sent": self.total_sent,
                "total_failed": self.total_failed,
                "available_apps": self._available_apps(len(endpoints)),
                "rate_limited_apps": len(endpoints) - self._available_apps(len(endpoints)),
            },
        }

    async def send_bulk(
        self, emails: Sequence[str], subject: str | None = None, from_name: str | None = None
    ) -> dict[str, Any]:
        """Distribute ``emails`` across endpoints and deliver them.

        Each endpoint's share is sent sequentially with ``send_interval``
        spacing; different endpoints run concurrently. Units that no
        endpoint can absorb are reported ``undistributed``; units left on an
        endpoint that became exhausted mid-batch are reported ``failed``.

        Raises:
            NoCapacityAvailable: Not a single unit could be distributed.
            ProviderUnavailable: The endpoint list could not be loaded.
        """
        self._apply_daily_reset()
        endpoints = await self.provider.get_endpoints()

        async with self.ledger.lock:
            plan = distribute(self.ledger, endpoints, list(range(len(emails))))
            if not plan:
                raise self._no_capacity("All WebApps are at capacity", len(endpoints))
            for assignment in plan.assignments:
                self.ledger.reserve(assignment.ordinal, len(assignment.units))

        results: list[dict[str, Any] | None] = [None] * len(emails)

        async def run_assignment(assignment: Assignment[int]) -> None:
            webapp = assignment.ordinal + 1
            self.logger.info("Processing %d emails via WebApp #%d", len(assignment.units), webapp)
            done = 0
            try:
                for index in assignment.units:
                    if done:
                        await asyncio.sleep(self.send_interval)
                    if self.ledger.is_exhausted(assignment.ordinal):
                        break
                    done += 1
                    email = self._build_email(emails[index], subject, from_name)
                    outcome, _ = await self._dispatch(assignment.ordinal, assignment.address, email)
                    if isinstance(outcome, Delivered):
                        results[index] = self._unit_result(email.to, "sent", webapp)
                        self.logger.info("Sent: %s via WebApp #%d", email.to, webapp)
                    else:
                        if isinstance(outcome, QuotaExceeded):
                            self.logger.warning("WebApp #%d hit rate limit during bulk send", webapp)
                        results[index] = self._unit_result(email.to, "failed", webapp, outcome.detail)
                        self.logger.info("Failed: %s via WebApp #%d", email.to, webapp)
            finally:
                leftover = len(assignment.units) - done
                if leftover:
                    self.ledger.release(assignment.ordinal, leftover)
            for index in assignment.units[done:]:
                self.total_failed += 1
                results[index] = self._unit_result(emails[index], "failed", webapp, "endpoint quota exceeded")

        await asyncio.gather(*(run_assignment(assignment) for assignment in plan.assignments))

        for index in plan.undistributed:
            results[index] = self._unit_result(emails[index], "undistributed", None, "no endpoint capacity left")

        sent = sum(1 for r in results if r and r["status"] == "sent")
        failed = sum(1 for r in results if r and r["status"] == "failed")
        total = len(emails)
        return {
            "ok": True,
            "message": "Bulk email process completed",
            "summary": {
                "total": total,
                "sent": sent,
                "failed": failed,
                "undistributed": len(plan.undistributed),
                "success_rate": f"{(sent / total) * 100:.1f}%",
            },
            "distribution": [
                {
                    "webapp": assignment.ordinal + 1,
                    "emails_assigned": len(assignment.units),
                    "current_usage": self.ledger.usage_of(assignment.ordinal),
                    "limit": self.ledger.daily_limit,
                }
                for assignment in plan.assignments
            ],
            "results": results,
        }

    def _unit_result(self, email: str, status: str, webapp: int | None, error: str | None = None) -> dict[str, Any]:
        result: dict[str, Any] = {
            "email": email,
            "status": status,
            "webapp": webapp,
            "timestamp": self._utc_now_iso(),
        }
        if error is not None:
            result["error"] = error
        return result

    async def stats(self) -> dict[str, Any]:
        """Read-only snapshot of usage, limits and cache state."""
        endpoints = await self.provider.get_endpoints()
        available = self._available_apps(len(endpoints))
        return {
            "ok": True,
            "stats": {
                "total_sent": self.total_sent,
                "total_failed": self.total_failed,
                "total_webapps": len(endpoints),
                "available_apps": available,
                "rate_limited_apps": len(endpoints) - available,
                "daily_limit": self.ledger.daily_limit,
                "uptime": int(time.monotonic() - self._started_at),
                "last_reset": self.ledger.last_reset.isoformat(),
                "reset_pending": self.reset_policy.is_due(self.ledger, self._clock()),
                "exhausted": sorted(ordinal + 1 for ordinal in self.ledger.exhausted),
                "cache_status": self.provider.cache_status(),
                "webapp_details": self._usage_snapshot(len(endpoints)),
            },
        }

    def reset(self) -> dict[str, Any]:
        """Administrative reset of usage counters and exhausted markers."""
        self.ledger.reset(self._clock())
        self.metrics.reset_usage()
        self.logger.info("Rate limits and usage counters manually reset")
        return {
            "ok": True,
            "message": "Rate limits and usage counters manually reset",
            "timestamp": self._utc_now_iso(),
        }

    async def refresh_endpoints(self) -> dict[str, Any]:
        """Drop the endpoint list cache and load it again."""
        urls = await self.provider.refresh()
        return {
            "ok": True,
            "message": "WebApp URLs cache refreshed",
            "urls_loaded": len(urls),
            "timestamp": self._utc_now_iso(),
        }
