"""Background task definitions: cron job handlers.

- ``cancel_expired_transactions`` releases sends whose TTL passed
- ``update_output_metrics`` refreshes the output gauges
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from slate_wallet.errors.wallet_errors import WalletError

if TYPE_CHECKING:
    from slate_wallet.engine.client import WalletSession
    from slate_wallet.metrics.collector import WalletMetrics

logger = logging.getLogger(__name__)

OUTPUT_METRICS_PERIOD = 15


async def task_cancel_expired_transactions(session: WalletSession) -> int:
    """Cancel pending sends whose ``ttl_cutoff_height`` is below the chain tip.

    Skipped while the node is unreachable, since a stale height could
    cancel transactions that are still live.

    Returns:
        The number of transactions cancelled.
    """
    height, validated = await session.chain_height()
    if not validated:
        logger.debug("Node unreachable; skipping expired transaction sweep")
        return 0

    cancelled = 0
    for entry in await session.tx_log.expired(height):
        try:
            await session.owner.cancel(entry.slate_id)
        except WalletError as exc:
            # Raced with a finalize or broadcast.
            logger.info("Expired transaction %s not cancelled: %s", entry.slate_id, exc.message)
            continue
        cancelled += 1
        logger.info(
            "Cancelled expired transaction %s (ttl %s < height %d)",
            entry.slate_id,
            entry.ttl_cutoff_height,
            height,
        )
    return cancelled


async def task_update_output_metrics(session: WalletSession, metrics: WalletMetrics) -> None:
    """Count outputs by status and push them to the Prometheus gauge."""
    try:
        metrics.set_output_counts(await session.outputs.count_by_status())
    except Exception:
        logger.exception("update_output_metrics failed")
