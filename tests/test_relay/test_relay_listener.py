"""Tests for the relay network, envelopes, listener and relay transport."""

from __future__ import annotations

import asyncio
import json

import pytest
from conftest import GRIN, SENDER_ENTROPY, FakeNode, fund, make_config, wait_for
from prometheus_client import CollectorRegistry

from slate_wallet.config.settings import RelayConfig, RelayCoordinator
from slate_wallet.engine.client import WalletSession
from slate_wallet.engine.models.tx_log import TxState
from slate_wallet.errors.definitions import TransportError, ValidationError
from slate_wallet.keychain.seed import WalletSeed
from slate_wallet.relay.client import RelayClient, decode_envelope, encode_envelope
from slate_wallet.relay.pubsub import MemoryRelay, RedisRelay
from slate_wallet.slate.models import Slate


def _session(tmp_path, hub, name: str, **relay) -> WalletSession:
    return WalletSession(
        make_config(tmp_path, name, **relay),
        seed=WalletSeed(SENDER_ENTROPY),
        node=FakeNode(),
        relay_network=hub,
        metrics_registry=CollectorRegistry(),
    )


# ---------------------------------------------------------------------------
# MemoryRelay
# ---------------------------------------------------------------------------


class TestMemoryRelay:
    async def test_publish_delivers(self) -> None:
        hub = MemoryRelay()
        got: list[str | None] = []

        async def on_message(raw: str | None) -> None:
            got.append(raw)

        await hub.subscribe("a", on_message)
        await hub.publish("a", "hello")
        await hub.publish("b", "dropped")
        await hub.unsubscribe("a")
        assert got == ["hello", None]
        assert not hub.has_subscriber("a")

    async def test_one_listener_per_address(self) -> None:
        hub = MemoryRelay()

        async def noop(raw: str | None) -> None:
            return None

        await hub.subscribe("a", noop)
        with pytest.raises(RuntimeError, match="already has a listener"):
            await hub.subscribe("a", noop)

    async def test_close_tears_down_everyone(self) -> None:
        hub = MemoryRelay()
        got: list[str | None] = []

        async def on_message(raw: str | None) -> None:
            got.append(raw)

        await hub.subscribe("a", on_message)
        await hub.subscribe("b", on_message)
        await hub.close()
        assert got == [None, None]

    async def test_callback_error_contained(self) -> None:
        hub = MemoryRelay()

        async def explode(raw: str | None) -> None:
            msg = "boom"
            raise RuntimeError(msg)

        await hub.subscribe("a", explode)
        await hub.publish("a", "x")


# ---------------------------------------------------------------------------
# Envelopes and the relay client
# ---------------------------------------------------------------------------


class TestEnvelope:
    def test_round_trip(self) -> None:
        slate = Slate.blank(GRIN, 8_000_000, 10)
        envelope = decode_envelope(encode_envelope("wallet-a", slate, 2))
        assert envelope.origin == "wallet-a"
        assert envelope.slate.id == slate.id
        assert envelope.slate.version == 2

    @pytest.mark.parametrize(
        "raw",
        [
            "not json",
            json.dumps([1, 2]),
            json.dumps({"slate": {}}),
            json.dumps({"from": "", "slate": {}}),
        ],
    )
    def test_malformed(self, raw: str) -> None:
        with pytest.raises(ValidationError):
            decode_envelope(raw)

    def test_bad_slate(self) -> None:
        with pytest.raises(ValidationError, match="slate"):
            decode_envelope(json.dumps({"from": "wallet-a", "slate": {"id": "x"}}))


class TestRelayClient:
    def test_generated_address(self) -> None:
        client = RelayClient(RelayConfig())
        assert client.address.startswith("slate-")
        assert not client.is_connected
        with pytest.raises(RuntimeError, match="not connected"):
            _ = client.network

    async def test_memory_backend(self) -> None:
        client = RelayClient(RelayConfig(address="me"))
        await client.connect()
        assert isinstance(client.network, MemoryRelay)
        await client.close()
        assert not client.is_connected

    async def test_redis_backend_is_lazy(self) -> None:
        client = RelayClient(
            RelayConfig(coordinator=RelayCoordinator.REDIS, redis_url="redis://localhost:1/0")
        )
        await client.connect()
        assert isinstance(client.network, RedisRelay)
        await client.close()

    async def test_shared_network_not_closed(self) -> None:
        hub = MemoryRelay()

        async def noop(raw: str | None) -> None:
            return None

        await hub.subscribe("other", noop)
        client = RelayClient(RelayConfig(address="me"), network=hub)
        await client.close()
        assert hub.has_subscriber("other")
        assert client.is_connected


# ---------------------------------------------------------------------------
# Listener and asynchronous send
# ---------------------------------------------------------------------------


class TestListener:
    async def test_listen_returns_address(self, receiver) -> None:
        assert await receiver.listen() == "wallet-receiver"
        listener, started = await receiver.ensure_listening()
        assert not started
        assert listener.is_running
        assert (await receiver.health_check())["listener"] == "ok"

    async def test_relay_disabled(self, tmp_path, relay_hub) -> None:
        async with _session(tmp_path, relay_hub, "off", enabled=False) as session:
            with pytest.raises(TransportError, match="disabled"):
                await session.listen()

    async def test_send_over_relay(self, funded, receiver, node) -> None:
        await receiver.listen()
        final = await funded.owner.send_tx(5 * GRIN, "wallet-receiver")

        assert final.is_finalized
        entry = await funded.tx_log.get_transaction(final.id)
        assert entry.tx_state is TxState.POSTED
        assert len(node.pushed) == 1

        outcomes = [(r.outcome, r.origin, r.slate_id) for r in receiver.listener.reports]
        assert outcomes == [("countersigned", "wallet-sender", final.id)]
        assert [r.outcome for r in funded.listener.reports] == ["reply"]
        registry = receiver.metrics.registry
        assert registry.get_sample_value(
            "slate_relay_messages_total", {"outcome": "countersigned"}
        ) == 1

    async def test_garbage_does_not_stop_listener(self, funded, receiver, relay_hub) -> None:
        await receiver.listen()
        await relay_hub.publish("wallet-receiver", "garbage")
        await relay_hub.publish("wallet-receiver", json.dumps({"from": "x", "slate": 5}))
        await wait_for(lambda: len(receiver.listener.reports) == 2)
        assert [r.outcome for r in receiver.listener.reports] == ["error", "error"]
        assert receiver.listener.is_running

        final = await funded.owner.send_tx(5 * GRIN, "wallet-receiver")
        assert final.is_finalized

    async def test_duplicate_slate_reported(self, funded, receiver, relay_hub) -> None:
        await receiver.listen()
        slate = await funded.owner.init_send_tx(5 * GRIN)
        message = encode_envelope("wallet-sender", slate)
        await relay_hub.publish("wallet-receiver", message)
        await relay_hub.publish("wallet-receiver", message)
        await wait_for(lambda: len(receiver.listener.reports) == 2)
        second = receiver.listener.reports[1]
        assert second.outcome == "error"
        assert "already received" in second.error

    async def test_reporter_callback(self, tmp_path, relay_hub, funded) -> None:
        seen = []
        receiver = WalletSession(
            make_config(tmp_path, "reported"),
            seed=WalletSeed(bytes(16)),
            node=FakeNode(),
            relay_network=relay_hub,
            metrics_registry=CollectorRegistry(),
            listener_reporter=seen.append,
        )
        async with receiver:
            await receiver.listen()
            await funded.owner.send_tx(5 * GRIN, "wallet-reported")
            assert [r.outcome for r in seen] == ["countersigned"]

    async def test_timeout_releases_outputs(self, tmp_path, relay_hub) -> None:
        async with _session(tmp_path, relay_hub, "lonely", send_timeout=0.1) as session:
            await fund(session, 10 * GRIN)
            with pytest.raises(TransportError, match="no reply"):
                await session.owner.send_tx(5 * GRIN, "wallet-nobody")
            (entry,) = await session.tx_log.list_transactions()
            assert entry.tx_state is TxState.CANCELLED
            _, info = await session.retrieve_summary_info()
            assert info["amount_currently_spendable"] == 10 * GRIN

    async def test_teardown_while_waiting(self, tmp_path, relay_hub) -> None:
        async with _session(tmp_path, relay_hub, "waiting", send_timeout=30) as session:
            await fund(session, 10 * GRIN)
            send = asyncio.create_task(session.owner.send_tx(5 * GRIN, "wallet-nobody"))
            await wait_for(lambda: session.listener is not None)
            await asyncio.sleep(0.05)
            await session.stop_listening()
            with pytest.raises(TransportError, match="listener stopped"):
                await send
            (entry,) = await session.tx_log.list_transactions()
            assert entry.tx_state is TxState.CANCELLED

    async def test_close_stops_listener(self, tmp_path, relay_hub) -> None:
        session = _session(tmp_path, relay_hub, "closing")
        await session.initialize()
        await session.listen()
        assert relay_hub.has_subscriber("wallet-closing")
        await session.close()
        assert not relay_hub.has_subscriber("wallet-closing")
        assert session.listener is None
