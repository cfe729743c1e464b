# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Prometheus metrics for the contact relay.

All metrics use the ``crl_`` prefix (contact-relay).

Metrics exposed:
    - ``crl_submissions_total``: Submissions by outcome and realm.
    - ``crl_dispatch_failures_total``: Handler failures by handler name.
    - ``crl_registered_handlers``: Gauge of handlers currently registered.

The pipeline talks to metrics only through the :class:`SubmissionObserver`
protocol, so any object with the same two methods can replace
:class:`ContactMetrics`.

Example:
    Accessing metrics via the REST API::

        GET /metrics
"""

from __future__ import annotations

from typing import Protocol

from prometheus_client import CollectorRegistry, Counter, Gauge, generate_latest


class SubmissionObserver(Protocol):
    """Event sink injected into the submission pipeline."""

    def record(self, event: str, realm: str | None = None) -> None:
        """Record one pipeline outcome."""
        ...

    def record_dispatch_failure(self, handler: str) -> None:
        """Record a failing delivery handler."""
        ...


class ContactMetrics:
    """Prometheus collector implementing :class:`SubmissionObserver`.

    Attributes:
        registry: The Prometheus CollectorRegistry holding all metrics.
        submissions: Counter of submissions labelled by outcome and realm.
        dispatch_failures: Counter of handler failures labelled by handler.
        handlers: Gauge of registered handlers.
    """

    def __init__(self, registry: CollectorRegistry | None = None):
        """Initialize metrics with an optional custom registry.

        Args:
            registry: Optional Prometheus CollectorRegistry. A new registry is
                created when omitted, which keeps test instances independent.
        """
        self.registry = registry or CollectorRegistry()
        self.submissions = Counter(
            "crl_submissions_total",
            "Contact submissions by outcome",
            ["outcome", "realm"],
            registry=self.registry,
        )
        self.dispatch_failures = Counter(
            "crl_dispatch_failures_total",
            "Delivery handler failures",
            ["handler"],
            registry=self.registry,
        )
        self.handlers = Gauge(
            "crl_registered_handlers",
            "Currently registered delivery handlers",
            registry=self.registry,
        )

    def record(self, event: str, realm: str | None = None) -> None:
        """Increment the submission counter.

        Args:
            event: Outcome tag (e.g. ``accepted``, ``rate_limited``).
            realm: Resolved tenant key. Falls back to "none" when the request
                never reached tenant resolution.
        """
        self.submissions.labels(outcome=event, realm=realm or "none").inc()

    def record_dispatch_failure(self, handler: str) -> None:
        self.dispatch_failures.labels(handler=handler or "unknown").inc()

    def set_handlers(self, value: int) -> None:
        self.handlers.set(value)

    def generate_latest(self) -> bytes:
        """Export all metrics in Prometheus text exposition format."""
        return generate_latest(self.registry)
