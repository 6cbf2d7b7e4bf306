"""Prometheus metrics for the algo scheduler loop."""

from __future__ import annotations

import logging
from typing import Dict, Optional

from prometheus_client import CollectorRegistry, Counter, Gauge, Summary, start_http_server

logger = logging.getLogger(__name__)


class AlgoMetrics:
    """
    Tick and order-outcome metrics.

    Each instance owns its registry, so building several loops in one
    process (tests) never trips duplicate-registration errors.
    """

    def __init__(self, enabled: bool = False, port: int = 9100, registry: Optional[CollectorRegistry] = None):
        self._enabled = bool(enabled)
        self._port = port
        self._started = False
        self.registry = registry or CollectorRegistry()

        self._tick_summary = Summary(
            "algo_tick_duration_seconds",
            "Duration of one scheduler tick",
            registry=self.registry,
        )
        self._tick_counter = Counter(
            "algo_ticks_total",
            "Scheduler ticks run",
            registry=self.registry,
        )
        self._outcome_counter = Counter(
            "algo_order_outcomes_total",
            "Per-order tick outcomes",
            labelnames=("outcome",),
            registry=self.registry,
        )
        self._active_orders_gauge = Gauge(
            "algo_active_orders",
            "Orders evaluated in the last tick",
            registry=self.registry,
        )
        self._session_gauge = Gauge(
            "algo_trading_session_active",
            "1 if a trading session is active",
            registry=self.registry,
        )

    def start(self) -> None:
        if not self._enabled or self._started:
            return
        start_http_server(self._port, registry=self.registry)
        self._started = True
        logger.info(f"Prometheus metrics exporter listening on :{self._port}")

    def record_tick(self, outcomes: Dict[str, int], duration_seconds: float, session_active: bool) -> None:
        self._tick_counter.inc()
        self._tick_summary.observe(duration_seconds)
        self._active_orders_gauge.set(sum(outcomes.values()))
        self._session_gauge.set(1 if session_active else 0)
        for outcome, count in outcomes.items():
            self._outcome_counter.labels(outcome=outcome).inc(count)

    def outcome_total(self, outcome: str) -> float:
        value = self.registry.get_sample_value("algo_order_outcomes_total", {"outcome": outcome})
        return value or 0.0
