"""Tests for WalletSession: lifecycle, supporting reads and seed management."""

from __future__ import annotations

import uuid

import pytest
from conftest import CHAIN_HEIGHT, GRIN, SENDER_ENTROPY, FakeNode, make_config
from prometheus_client import CollectorRegistry

from slate_wallet.engine.client import WalletSession, seed_path
from slate_wallet.errors.definitions import ConfigError, StateError, StorageError, ValidationError
from slate_wallet.keychain.seed import WalletSeed
from slate_wallet.transport.base import Destination, DestinationKind

# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


class TestLifecycle:
    def test_properties_before_initialize(self, tmp_path) -> None:
        session = WalletSession(make_config(tmp_path))
        assert not session.is_initialized
        for name in ("datastore", "keychain", "reservations", "outputs", "tx_log", "owner"):
            with pytest.raises(RuntimeError, match="not initialized"):
                getattr(session, name)
        assert session.listener is None
        assert session.metrics is None

    async def test_initialize_twice(self, session) -> None:
        with pytest.raises(RuntimeError, match="already initialized"):
            await session.initialize()

    async def test_close_is_idempotent(self, tmp_path) -> None:
        session = WalletSession(
            make_config(tmp_path),
            seed=WalletSeed(SENDER_ENTROPY),
            node=FakeNode(),
            metrics_registry=CollectorRegistry(),
        )
        await session.initialize()
        await session.close()
        await session.close()
        assert not session.is_initialized

    async def test_missing_seed_file(self, tmp_path) -> None:
        session = WalletSession(make_config(tmp_path), node=FakeNode())
        with pytest.raises(StorageError, match="does not exist"):
            await session.initialize()

    async def test_loads_seed_file(self, tmp_path) -> None:
        config = make_config(tmp_path)
        WalletSession.wallet_init(config)
        session = WalletSession(config, node=FakeNode(), metrics_registry=CollectorRegistry())
        async with session:
            assert session.keychain is not None

    async def test_unsupported_chain(self, tmp_path) -> None:
        config = make_config(tmp_path)
        config.wallet.chain_type = "usernet"
        session = WalletSession(config, seed=WalletSeed(SENDER_ENTROPY), node=FakeNode())
        with pytest.raises(ConfigError, match="unsupported chain type"):
            await session.initialize()

    async def test_transport_for(self, session) -> None:
        assert session.transport_for(Destination.http("http://x")).kind is DestinationKind.HTTP
        assert session.transport_for(Destination.relay("peer")).kind is DestinationKind.RELAY
        assert session.file_transport.kind is DestinationKind.FILE

    async def test_health_check(self, session, node) -> None:
        status = await session.health_check()
        assert status == {
            "session": "ok",
            "datastore": "ok",
            "keeper": "ok",
            "node": "ok",
            "listener": "stopped",
        }
        node.reachable = False
        assert (await session.health_check())["node"] == "unreachable"


# ---------------------------------------------------------------------------
# Supporting reads
# ---------------------------------------------------------------------------


class TestReads:
    async def test_node_height(self, session, node) -> None:
        assert await session.node_height() == (True, CHAIN_HEIGHT)
        node.reachable = False
        assert await session.node_height() == (False, CHAIN_HEIGHT)

    async def test_height_zero_when_never_reached(self, session, node) -> None:
        node.reachable = False
        assert await session.chain_height() == (0, False)

    async def test_summary(self, funded) -> None:
        validated, info = await funded.retrieve_summary_info()
        assert validated
        assert info["amount_currently_spendable"] == 80 * GRIN
        assert info["total"] == 80 * GRIN
        assert info["last_confirmed_height"] == CHAIN_HEIGHT

    async def test_summary_tracks_locked_and_change(self, funded) -> None:
        slate = await funded.owner.init_send_tx(5 * GRIN)
        _, info = await funded.retrieve_summary_info()
        assert info["amount_locked"] == 10 * GRIN
        assert info["amount_awaiting_finalization"] == 10 * GRIN - 5 * GRIN - slate.fee
        assert info["amount_currently_spendable"] == 70 * GRIN

    async def test_summary_minimum_confirmations(self, funded) -> None:
        _, info = await funded.retrieve_summary_info(minimum_confirmations=CHAIN_HEIGHT + 1)
        assert info["amount_currently_spendable"] == 0
        assert info["amount_awaiting_confirmation"] == 80 * GRIN

    async def test_summary_unvalidated(self, funded, node) -> None:
        node.reachable = False
        validated, _ = await funded.retrieve_summary_info()
        assert not validated

    async def test_retrieve_txs(self, funded) -> None:
        slate = await funded.owner.init_send_tx(5 * GRIN)
        validated, txs = await funded.retrieve_txs()
        assert validated
        assert [t["slate_id"] for t in txs] == [slate.id]
        assert txs[0]["state"] == "locked"

        _, one = await funded.retrieve_txs(slate.id.upper())
        assert len(one) == 1
        _, none = await funded.retrieve_txs(str(uuid.uuid4()))
        assert none == []

    async def test_retrieve_txs_invalid_id(self, session) -> None:
        with pytest.raises(ValidationError, match="invalid slate id"):
            await session.retrieve_txs("not-a-uuid")

    async def test_retrieve_outputs(self, funded) -> None:
        slate = await funded.owner.init_send_tx(5 * GRIN)
        _, outputs = await funded.retrieve_outputs()
        assert len(outputs) == 4
        _, change = await funded.retrieve_outputs(slate.id)
        assert len(change) == 1
        assert change[0]["is_change"]
        assert change[0]["num_confirmations"] == 0

    async def test_retrieve_outputs_include_spent(self, funded) -> None:
        slate = await funded.owner.init_send_tx(5 * GRIN)
        await funded.owner.cancel(slate.id)
        _, live = await funded.retrieve_outputs()
        _, everything = await funded.retrieve_outputs(include_spent=True)
        assert len(live) == 3
        assert len(everything) == 4

    async def test_confirm_unknown(self, session) -> None:
        with pytest.raises(StateError, match="not found"):
            await session.confirm_transaction(str(uuid.uuid4()))


# ---------------------------------------------------------------------------
# Seed management
# ---------------------------------------------------------------------------


class TestSeedManagement:
    def test_init_wallet_seed(self) -> None:
        assert len(WalletSession.init_wallet_seed(12).split()) == 12

    def test_wallet_init_and_mnemonic(self, tmp_path) -> None:
        config = make_config(tmp_path)
        phrase = WalletSession.wallet_init(config)
        assert seed_path(config).exists()
        assert WalletSession.get_wallet_mnemonic(config) == phrase

    def test_wallet_init_requires_password(self, tmp_path) -> None:
        config = make_config(tmp_path)
        config.wallet.password = ""
        with pytest.raises(ConfigError, match="password"):
            WalletSession.wallet_init(config)

    def test_wallet_init_refuses_existing(self, tmp_path) -> None:
        config = make_config(tmp_path)
        WalletSession.wallet_init(config)
        with pytest.raises(StorageError):
            WalletSession.wallet_init(config)

    def test_recover(self, tmp_path) -> None:
        phrase = WalletSeed(SENDER_ENTROPY).to_mnemonic()
        config = make_config(tmp_path)
        WalletSession.wallet_init_recover(config, phrase)
        assert WalletSession.get_wallet_mnemonic(config) == phrase

    def test_recover_invalid_phrase(self, tmp_path) -> None:
        with pytest.raises(ConfigError):
            WalletSession.wallet_init_recover(
                make_config(tmp_path), "definitely not a recovery phrase"
            )

    def test_check_password(self, tmp_path) -> None:
        config = make_config(tmp_path)
        WalletSession.wallet_init(config)
        WalletSession.check_password(config, "correct horse")
        with pytest.raises(ConfigError, match="incorrect"):
            WalletSession.check_password(config, "battery staple")
