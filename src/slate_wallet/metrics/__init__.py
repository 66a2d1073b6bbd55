"""Metrics: Prometheus metrics collection and exposure."""

from __future__ import annotations

from slate_wallet.metrics.collector import WalletMetrics

__all__ = ["WalletMetrics"]
