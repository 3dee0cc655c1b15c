# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Prometheus metrics for monitoring the mail relay.

All metrics use the ``mr_`` prefix and, where per-endpoint, a ``webapp``
label holding the 1-based endpoint number.

Metrics exposed:
    - ``mr_sent_total``: Counter of delivered emails per endpoint.
    - ``mr_errors_total``: Counter of failed deliveries per endpoint.
    - ``mr_quota_exceeded_total``: Counter of endpoint-reported quota hits.
    - ``mr_webapp_usage``: Gauge of the daily usage of each endpoint.
    - ``mr_exhausted_webapps``: Gauge of endpoints currently exhausted.
"""

from prometheus_client import CollectorRegistry, Counter, Gauge, generate_latest


class RelayMetrics:
    """Prometheus metrics collector for the relay.

    Attributes:
        registry: The Prometheus CollectorRegistry holding all metrics.
    """

    def __init__(self, registry: CollectorRegistry | None = None):
        self.registry = registry or CollectorRegistry()
        self.sent = Counter(
            "mr_sent_total",
            "Total delivered emails",
            ["webapp"],
            registry=self.registry,
        )
        self.errors = Counter(
            "mr_errors_total",
            "Total delivery errors",
            ["webapp"],
            registry=self.registry,
        )
        self.quota_exceeded = Counter(
            "mr_quota_exceeded_total",
            "Total endpoint-reported quota exhaustions",
            ["webapp"],
            registry=self.registry,
        )
        self.usage = Gauge(
            "mr_webapp_usage",
            "Daily usage per endpoint",
            ["webapp"],
            registry=self.registry,
        )
        self.exhausted = Gauge(
            "mr_exhausted_webapps",
            "Endpoints currently exhausted",
            registry=self.registry,
        )

    @staticmethod
    def _label(ordinal: int) -> str:
        return str(ordinal + 1)

    def inc_sent(self, ordinal: int, usage: int) -> None:
        """Count a delivery and publish the endpoint's new usage."""
        label = self._label(ordinal)
        self.sent.labels(webapp=label).inc()
        self.usage.labels(webapp=label).set(usage)

    def inc_error(self, ordinal: int) -> None:
        self.errors.labels(webapp=self._label(ordinal)).inc()

    def inc_quota_exceeded(self, ordinal: int) -> None:
        self.quota_exceeded.labels(webapp=self._label(ordinal)).inc()

    def set_exhausted(self, value: int) -> None:
        self.exhausted.set(value)

    def reset_usage(self) -> None:
        """Drop per-endpoint usage series after a ledger reset."""
        self.usage.clear()
        self.exhausted.set(0)

    def generate_latest(self) -> bytes:
        """Export all metrics in Prometheus text exposition format."""
        return generate_latest(self.registry)
