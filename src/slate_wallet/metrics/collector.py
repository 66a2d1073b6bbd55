"""Prometheus metrics for the slate lifecycle.

- ``slate_state_transitions_total`` counter-vec (state)
- ``slate_exchange_seconds`` histogram-vec (transport)
- ``slate_relay_messages_total`` counter-vec (outcome)
- ``slate_outputs_total`` gauge-vec (status)
- ``slate_cron_seconds`` / ``slate_cron_last_execution`` per job
"""

from __future__ import annotations

import time
from contextlib import contextmanager
from typing import TYPE_CHECKING

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram

if TYPE_CHECKING:
    from collections.abc import Iterator

_PREFIX = "slate"


class WalletMetrics:
    """Per-session metrics bound to their own registry.

    Each session gets a private :class:`CollectorRegistry` so several
    sessions can live in one process (tests run two side by side).
    """

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        self._registry = registry or CollectorRegistry()

        self._transitions = Counter(
            f"{_PREFIX}_state_transitions_total",
            "Transaction state transitions by target state",
            ("state",),
            registry=self._registry,
        )
        self._exchange = Histogram(
            f"{_PREFIX}_exchange_seconds",
            "Duration of slate exchanges with a counterparty",
            ("transport",),
            registry=self._registry,
        )
        self._relay_messages = Counter(
            f"{_PREFIX}_relay_messages_total",
            "Inbound relay messages by outcome",
            ("outcome",),
            registry=self._registry,
        )
        self._outputs = Gauge(
            f"{_PREFIX}_outputs_total",
            "Wallet outputs by status",
            ("status",),
            registry=self._registry,
        )
        self._cron_histogram = Histogram(
            f"{_PREFIX}_cron_seconds",
            "Duration of background job executions",
            ("job_name",),
            registry=self._registry,
        )
        self._cron_last = Gauge(
            f"{_PREFIX}_cron_last_execution",
            "Timestamp of last background job execution",
            ("job_name",),
            registry=self._registry,
        )

    @property
    def registry(self) -> CollectorRegistry:
        """Return the underlying Prometheus registry."""
        return self._registry

    # -- Counters --

    def record_transition(self, state: str) -> None:
        self._transitions.labels(state=state).inc()

    def record_relay_message(self, outcome: str) -> None:
        """Count an inbound relay message (``reply``, ``countersigned``, ``error``)."""
        self._relay_messages.labels(outcome=outcome).inc()

    def set_output_counts(self, counts: dict[str, int]) -> None:
        for status, count in counts.items():
            self._outputs.labels(status=status).set(count)

    # -- Operation trackers (context managers) --

    @contextmanager
    def track_exchange(self, transport: str) -> Iterator[None]:
        """Track the duration of a slate exchange over ``transport``."""
        start = time.monotonic()
        try:
            yield
        finally:
            self._exchange.labels(transport=transport).observe(time.monotonic() - start)

    @contextmanager
    def track_cron(self, job_name: str) -> Iterator[None]:
        """Track the duration of a cron job and record last execution time."""
        start = time.monotonic()
        try:
            yield
        finally:
            self._cron_histogram.labels(job_name=job_name).observe(time.monotonic() - start)
            self._cron_last.labels(job_name=job_name).set(time.time())
