"""Shared test fixtures for py-slate test suite."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any

import pytest
from prometheus_client import CollectorRegistry

from slate_wallet.config.settings import AppConfig, RelayConfig, TaskConfig, WalletConfig
from slate_wallet.engine.client import WalletSession
from slate_wallet.errors.definitions import BroadcastError, TransportError
from slate_wallet.keychain.seed import WalletSeed
from slate_wallet.node.client import NodeClient
from slate_wallet.relay.pubsub import MemoryRelay

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable
    from pathlib import Path

    from slate_wallet.engine.models.output import Output

# One grin in nanounits
GRIN = 1_000_000_000
CHAIN_HEIGHT = 100

SENDER_ENTROPY = bytes(range(16))
RECEIVER_ENTROPY = bytes(range(16, 32))


class FakeNode(NodeClient):
    """Node client double: fixed height, records broadcasts."""

    def __init__(self, height: int = CHAIN_HEIGHT) -> None:
        self.height = height
        self.reachable = True
        self.reject: str | None = None
        self.pushed: list[dict[str, Any]] = []

    async def chain_height(self) -> int:
        if not self.reachable:
            msg = "node unreachable"
            raise TransportError(msg)
        return self.height

    async def broadcast(self, tx: dict[str, Any], *, fluff: bool = False) -> None:
        if self.reject is not None:
            raise BroadcastError(self.reject)
        self.pushed.append(tx)


def make_config(tmp_path: Path, name: str = "sender", **relay: Any) -> AppConfig:
    """Config for a wallet under ``tmp_path/name`` with a file-backed SQLite store."""
    relay.setdefault("address", f"wallet-{name}")
    relay.setdefault("settle_delay", 0)
    relay.setdefault("send_timeout", 5)
    return AppConfig(
        wallet=WalletConfig(
            account="default",
            data_dir=str(tmp_path / name),
            password="correct horse",
            minimum_confirmations=1,
        ),
        relay=RelayConfig(**relay),
        task=TaskConfig(enabled=False),
    )


async def fund(session: WalletSession, *values: int, height: int = 1) -> list[Output]:
    """Add confirmed spendable outputs to the session's default account."""
    account = session.config.wallet.account
    return [
        await session.reservations.create_output(account, value, height=height)
        for value in values
    ]


async def wait_for(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Poll until ``predicate`` holds; fails the test on timeout."""
    async with asyncio.timeout(timeout):
        while not predicate():
            await asyncio.sleep(0.01)


@pytest.fixture
def relay_hub() -> MemoryRelay:
    """One in-memory relay shared by every session of a test."""
    return MemoryRelay()


@pytest.fixture
def node() -> FakeNode:
    return FakeNode()


@pytest.fixture
async def session(tmp_path, node, relay_hub) -> AsyncIterator[WalletSession]:
    """Initialized sender session with an empty wallet."""
    s = WalletSession(
        make_config(tmp_path, "sender"),
        seed=WalletSeed(SENDER_ENTROPY),
        node=node,
        relay_network=relay_hub,
        metrics_registry=CollectorRegistry(),
    )
    await s.initialize()
    yield s
    await s.close()


@pytest.fixture
async def receiver(tmp_path, relay_hub) -> AsyncIterator[WalletSession]:
    """Initialized receiver session on the same relay hub, with its own node."""
    s = WalletSession(
        make_config(tmp_path, "receiver"),
        seed=WalletSeed(RECEIVER_ENTROPY),
        node=FakeNode(),
        relay_network=relay_hub,
        metrics_registry=CollectorRegistry(),
    )
    await s.initialize()
    yield s
    await s.close()


@pytest.fixture
async def funded(session) -> WalletSession:
    """Sender session holding 10, 20 and 50 grin outputs."""
    await fund(session, 10 * GRIN, 20 * GRIN, 50 * GRIN)
    return session
