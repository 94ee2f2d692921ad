# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Prometheus metrics for the dispatch path.

All metrics use the ``claptrap_`` prefix and are labeled by ``source``
(``http`` or ``rabbitmq``).

Metrics exposed:
    - ``claptrap_received_total``: Messages handed to the dispatcher.
    - ``claptrap_malformed_total``: Messages that fell back to the malformed notice.
    - ``claptrap_delivered_total``: Mail command runs that exited with status 0.
    - ``claptrap_failed_total``: Mail command runs that failed or could not start.
"""

from prometheus_client import CollectorRegistry, Counter, generate_latest


class DispatchMetrics:
    """Prometheus counters for received, malformed, delivered and failed messages."""

    def __init__(self, registry: CollectorRegistry | None = None):
        self.registry = registry or CollectorRegistry()
        self.received = Counter(
            "claptrap_received_total",
            "Messages received",
            ["source"],
            registry=self.registry,
        )
        self.malformed = Counter(
            "claptrap_malformed_total",
            "Messages that could not be parsed",
            ["source"],
            registry=self.registry,
        )
        self.delivered = Counter(
            "claptrap_delivered_total",
            "Messages accepted by the mail command",
            ["source"],
            registry=self.registry,
        )
        self.failed = Counter(
            "claptrap_failed_total",
            "Messages the mail command failed to deliver",
            ["source"],
            registry=self.registry,
        )

    def inc_received(self, source: str) -> None:
        self.received.labels(source=source or "unknown").inc()

    def inc_malformed(self, source: str) -> None:
        self.malformed.labels(source=source or "unknown").inc()

    def inc_delivered(self, source: str) -> None:
        self.delivered.labels(source=source or "unknown").inc()

    def inc_failed(self, source: str) -> None:
        self.failed.labels(source=source or "unknown").inc()

    def generate_latest(self) -> bytes:
        """Export all metrics in Prometheus text exposition format."""
        return generate_latest(self.registry)
