"""Task manager: periodic background jobs.

Provides ``TaskManager`` for periodic background tasks such as:
- Expired transaction cancellation (TTL cutoff below the chain tip)
- Output gauge refresh for Prometheus

Uses ``asyncio`` tasks for scheduling.
"""

from __future__ import annotations

from slate_wallet.taskmanager.manager import CronJob, TaskManager

__all__ = ["CronJob", "TaskManager"]
