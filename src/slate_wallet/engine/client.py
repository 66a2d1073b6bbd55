"""WalletSession: the authenticated handle owning storage, keys, node and relay."""

from __future__ import annotations

import logging
import uuid
from pathlib import Path
from typing import TYPE_CHECKING, Any

from slate_wallet.errors.definitions import (
    ConfigError,
    StorageError,
    TransportError,
    ValidationError,
)
from slate_wallet.keychain.seed import SEED_FILE_NAME, WalletSeed
from slate_wallet.transport.base import Destination, DestinationKind

if TYPE_CHECKING:
    from collections.abc import Callable

    import httpx
    from prometheus_client import CollectorRegistry

    from slate_wallet.config.settings import AppConfig
    from slate_wallet.datastore.client import Datastore
    from slate_wallet.engine.services.foreign_service import ForeignService
    from slate_wallet.engine.services.output_service import OutputService
    from slate_wallet.engine.services.owner_service import OwnerService
    from slate_wallet.engine.services.reservation_keeper import ReservationKeeper
    from slate_wallet.engine.services.tx_log_service import TxLogService
    from slate_wallet.keychain.keys import Keychain
    from slate_wallet.metrics.collector import WalletMetrics
    from slate_wallet.node.client import NodeClient
    from slate_wallet.relay.client import RelayClient
    from slate_wallet.relay.listener import ListenerReport, RelayListener
    from slate_wallet.relay.pubsub import RelayNetwork
    from slate_wallet.taskmanager.manager import TaskManager
    from slate_wallet.transport.base import Transport
    from slate_wallet.transport.file import FileTransport

logger = logging.getLogger(__name__)

# Error messages
_ERR_NOT_INITIALIZED = "Wallet session not initialized. Call initialize() first."


def seed_path(config: AppConfig) -> Path:
    return config.wallet.wallet_data_dir / SEED_FILE_NAME


class WalletSession:
    """Central handle owning every collaborator of one configured wallet.

    The orchestrator, the receiver workflow and the relay listener all work
    through one session. Reads go straight to the datastore; every write to
    outputs, reservations or transaction records goes through the
    :class:`ReservationKeeper` actor.

    Usage::

        session = WalletSession(config)
        await session.initialize()
        try:
            slate = await session.owner.send_tx(amount, "http://peer:3415")
        finally:
            await session.close()
    """

    def __init__(
        self,
        config: AppConfig,
        *,
        seed: WalletSeed | None = None,
        node: NodeClient | None = None,
        relay_network: RelayNetwork | None = None,
        http_transport: httpx.AsyncBaseTransport | None = None,
        metrics_registry: CollectorRegistry | None = None,
        listener_reporter: Callable[[ListenerReport], None] | None = None,
    ) -> None:
        """Create an uninitialized session.

        Args:
            config: Application configuration.
            seed: Wallet seed; read from the encrypted seed file when omitted.
            node: Node client; an :class:`HTTPNodeClient` when omitted.
            relay_network: Shared relay network; created from ``config.relay`` when omitted.
            http_transport: httpx transport for the synchronous slate exchange.
            metrics_registry: Prometheus registry for this session's metrics.
            listener_reporter: Called with every relay listener report.
        """
        self._config = config
        self._seed = seed
        self._node = node
        self._relay_network = relay_network
        self._http_transport = http_transport
        self._metrics_registry = metrics_registry
        self._listener_reporter = listener_reporter
        self._initialized = False
        self._last_height: int | None = None

        # Infrastructure components
        self._datastore: Datastore | None = None
        self._keychain: Keychain | None = None
        self._relay: RelayClient | None = None
        self._listener: RelayListener | None = None
        self._metrics: WalletMetrics | None = None
        self._task_manager: TaskManager | None = None

        # Services
        self._reservations: ReservationKeeper | None = None
        self._outputs: OutputService | None = None
        self._tx_log: TxLogService | None = None
        self._owner: OwnerService | None = None
        self._foreign: ForeignService | None = None
        self._transports: dict[DestinationKind, Transport] = {}

    async def initialize(self) -> None:
        """Unlock the seed, open storage and start the keeper.

        Raises:
            RuntimeError: If already initialized.
            ConfigError: If the wallet password is wrong or the chain type unsupported.
            StorageError: If no seed exists or the storage cannot be opened.
        """
        if self._initialized:
            msg = "Wallet session already initialized"
            raise RuntimeError(msg)

        # Import here to avoid circular deps
        from slate_wallet.datastore.client import Datastore
        from slate_wallet.datastore.migrations import run_auto_migrate
        from slate_wallet.keychain.keys import Keychain

        chain = self._config.wallet.chain
        if self._seed is None:
            self._seed = WalletSeed.load(seed_path(self._config), self._config.wallet.password)
        self._keychain = Keychain(self._seed.to_seed())

        self._datastore = Datastore(self._config.db, self._config.database_dsn)
        try:
            await self._datastore.open()
            await run_auto_migrate(self._datastore.engine)
        except OSError as exc:
            msg = f"cannot open wallet storage: {exc}"
            raise StorageError(msg) from exc

        if self._config.metrics.enabled:
            from slate_wallet.metrics.collector import WalletMetrics

            self._metrics = WalletMetrics(self._metrics_registry)

        # Initialize services
        from slate_wallet.engine.services.foreign_service import ForeignService
        from slate_wallet.engine.services.output_service import OutputService
        from slate_wallet.engine.services.owner_service import OwnerService
        from slate_wallet.engine.services.reservation_keeper import ReservationKeeper
        from slate_wallet.engine.services.tx_log_service import TxLogService

        self._reservations = ReservationKeeper(self)
        await self._reservations.start()
        self._outputs = OutputService(self)
        self._tx_log = TxLogService(self)
        self._owner = OwnerService(self)
        self._foreign = ForeignService(self)

        # Node client
        if self._node is None:
            from slate_wallet.node.client import HTTPNodeClient

            self._node = HTTPNodeClient.from_config(
                self._config.wallet, timeout=self._config.transport.http_timeout
            )
        await self._node.connect()

        # Relay client (the listener starts on demand)
        from slate_wallet.relay.client import RelayClient

        self._relay = RelayClient(self._config.relay, network=self._relay_network)

        # Transports
        from slate_wallet.transport.file import FileTransport
        from slate_wallet.transport.http import HTTPTransport
        from slate_wallet.transport.relay import RelayTransport

        self._transports = {
            DestinationKind.HTTP: HTTPTransport(
                timeout=self._config.transport.http_timeout, transport=self._http_transport
            ),
            DestinationKind.FILE: FileTransport(),
            DestinationKind.RELAY: RelayTransport(self),
        }

        # Task manager
        if self._config.task.enabled:
            from functools import partial

            from slate_wallet.taskmanager.manager import CronJob, TaskManager
            from slate_wallet.taskmanager.tasks import (
                OUTPUT_METRICS_PERIOD,
                task_cancel_expired_transactions,
                task_update_output_metrics,
            )

            self._task_manager = TaskManager(metrics=self._metrics)
            self._task_manager.register(
                "cancel_expired_transactions",
                CronJob(
                    handler=partial(task_cancel_expired_transactions, self),
                    period=self._config.task.expired_tx_period,
                ),
            )
            if self._metrics is not None:
                self._task_manager.register(
                    "update_output_metrics",
                    CronJob(
                        handler=partial(task_update_output_metrics, self, self._metrics),
                        period=OUTPUT_METRICS_PERIOD,
                    ),
                )
            await self._task_manager.start()

        self._initialized = True
        logger.info(
            "Wallet session initialized (account %s on %s)", self._config.wallet.account, chain
        )

    async def close(self) -> None:
        """Stop background activity and release every connection.

        The relay listener is stopped first. Can be called multiple times.
        """
        if not self._initialized:
            return

        if self._listener is not None:
            await self._listener.stop()
            self._listener = None

        if self._task_manager is not None:
            await self._task_manager.stop()
            self._task_manager = None

        for transport in self._transports.values():
            await transport.close()
        self._transports = {}

        if self._relay is not None:
            await self._relay.close()
            self._relay = None

        if self._node is not None:
            await self._node.close()

        if self._reservations is not None:
            await self._reservations.stop()
            self._reservations = None
        self._outputs = None
        self._tx_log = None
        self._owner = None
        self._foreign = None

        if self._datastore is not None:
            await self._datastore.close()
            self._datastore = None

        self._initialized = False
        logger.info("Wallet session closed")

    async def __aenter__(self) -> WalletSession:
        await self.initialize()
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Component registry
    # ------------------------------------------------------------------

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    @property
    def config(self) -> AppConfig:
        return self._config

    @property
    def datastore(self) -> Datastore:
        if self._datastore is None:
            raise RuntimeError(_ERR_NOT_INITIALIZED)
        return self._datastore

    @property
    def keychain(self) -> Keychain:
        if self._keychain is None:
            raise RuntimeError(_ERR_NOT_INITIALIZED)
        return self._keychain

    @property
    def reservations(self) -> ReservationKeeper:
        if self._reservations is None:
            raise RuntimeError(_ERR_NOT_INITIALIZED)
        return self._reservations

    @property
    def outputs(self) -> OutputService:
        if self._outputs is None:
            raise RuntimeError(_ERR_NOT_INITIALIZED)
        return self._outputs

    @property
    def tx_log(self) -> TxLogService:
        if self._tx_log is None:
            raise RuntimeError(_ERR_NOT_INITIALIZED)
        return self._tx_log

    @property
    def owner(self) -> OwnerService:
        """The transaction orchestrator (sender role)."""
        if self._owner is None:
            raise RuntimeError(_ERR_NOT_INITIALIZED)
        return self._owner

    @property
    def foreign(self) -> ForeignService:
        """The receiver workflow (foreign role)."""
        if self._foreign is None:
            raise RuntimeError(_ERR_NOT_INITIALIZED)
        return self._foreign

    @property
    def node(self) -> NodeClient:
        if self._node is None or not self._initialized:
            raise RuntimeError(_ERR_NOT_INITIALIZED)
        return self._node

    @property
    def relay(self) -> RelayClient:
        if self._relay is None:
            raise RuntimeError(_ERR_NOT_INITIALIZED)
        return self._relay

    @property
    def listener(self) -> RelayListener | None:
        """The relay listener, once started."""
        return self._listener

    @property
    def metrics(self) -> WalletMetrics | None:
        """Session metrics (None when disabled)."""
        return self._metrics

    @property
    def task_manager(self) -> TaskManager | None:
        """The task manager (None if not enabled)."""
        return self._task_manager

    @property
    def file_transport(self) -> FileTransport:
        if not self._initialized:
            raise RuntimeError(_ERR_NOT_INITIALIZED)
        return self._transports[DestinationKind.FILE]  # type: ignore[return-value]

    def transport_for(self, destination: Destination) -> Transport:
        """The transport serving ``destination``'s kind."""
        if not self._initialized:
            raise RuntimeError(_ERR_NOT_INITIALIZED)
        return self._transports[destination.kind]

    # ------------------------------------------------------------------
    # Relay listener
    # ------------------------------------------------------------------

    async def ensure_listening(self) -> tuple[RelayListener, bool]:
        """Start the relay listener unless it is already running.

        Returns:
            The listener and whether this call started it.

        Raises:
            TransportError: If the relay is disabled or cannot be reached.
        """
        if not self._config.relay.enabled:
            msg = "relay is disabled in this configuration"
            raise TransportError(msg)
        if self._listener is not None and self._listener.is_running:
            return self._listener, False

        from redis.exceptions import RedisError

        from slate_wallet.relay.listener import RelayListener

        try:
            await self.relay.connect()
            listener = RelayListener(
                self.relay,
                self.foreign,
                account=self._config.wallet.account,
                metrics=self._metrics,
                reporter=self._listener_reporter,
            )
            await listener.start()
        except (OSError, RedisError) as exc:
            msg = f"cannot start relay listener: {exc}"
            raise TransportError(msg) from exc
        self._listener = listener
        return listener, True

    async def listen(self) -> str:
        """Start serving inbound relay slates; returns this wallet's relay address."""
        listener, _ = await self.ensure_listening()
        return listener.address

    async def stop_listening(self) -> None:
        if self._listener is not None:
            await self._listener.stop()
            self._listener = None

    # ------------------------------------------------------------------
    # Supporting reads
    # ------------------------------------------------------------------

    async def chain_height(self) -> tuple[int, bool]:
        """Chain tip height and whether it came from the node just now.

        An unreachable node yields the last known height (0 if none) flagged
        as unvalidated instead of an error.
        """
        try:
            height = await self.node.chain_height()
        except TransportError as exc:
            logger.warning("Node height unavailable, using last known: %s", exc.message)
            return self._last_height or 0, False
        self._last_height = height
        return height, True

    async def node_height(self) -> tuple[bool, int]:
        """``(validated, height)`` as reported to callers."""
        height, validated = await self.chain_height()
        return validated, height

    async def retrieve_summary_info(
        self, account: str | None = None, *, minimum_confirmations: int | None = None
    ) -> tuple[bool, dict[str, Any]]:
        """Balance breakdown for ``account``; ``(validated, info)``."""
        height, validated = await self.chain_height()
        min_conf = (
            minimum_confirmations
            if minimum_confirmations is not None
            else self._config.wallet.minimum_confirmations
        )
        info = await self.outputs.summary(
            account or self._config.wallet.account, height, min_conf
        )
        return validated, info

    async def retrieve_txs(
        self, slate_id: str | None = None, *, account: str | None = None
    ) -> tuple[bool, list[dict[str, Any]]]:
        """Transaction records, optionally only the one for ``slate_id``.

        Raises:
            ValidationError: If ``slate_id`` is not a UUID.
        """
        if slate_id is not None:
            try:
                slate_id = str(uuid.UUID(slate_id))
            except ValueError:
                msg = f"invalid slate id: {slate_id}"
                raise ValidationError(msg) from None
        _, validated = await self.chain_height()
        entries = await self.tx_log.list_transactions(
            account=account or self._config.wallet.account, slate_id=slate_id
        )
        return validated, [e.to_dict() for e in entries]

    async def retrieve_outputs(
        self,
        slate_id: str | None = None,
        *,
        account: str | None = None,
        include_spent: bool = False,
    ) -> tuple[bool, list[dict[str, Any]]]:
        """Outputs of ``account``, optionally only those created by ``slate_id``."""
        from slate_wallet.engine.services.output_service import output_to_dict

        height, validated = await self.chain_height()
        outputs = await self.outputs.get_outputs(
            account=account or self._config.wallet.account,
            slate_id=slate_id,
            include_spent=include_spent,
        )
        return validated, [output_to_dict(o, height) for o in outputs]

    async def confirm_transaction(self, slate_id: str, height: int | None = None) -> None:
        """Mark a posted or received transaction as mined at ``height``."""
        if height is None:
            height, _ = await self.chain_height()
        await self.reservations.confirm(slate_id, height)

    # ------------------------------------------------------------------
    # File workflow (receiver half)
    # ------------------------------------------------------------------

    async def receive_file(
        self, path: str, message: str | None = None, *, account: str | None = None
    ) -> Path:
        """Countersign the slate in ``path`` and write ``<path>.response``."""
        transport = self.file_transport
        slate = await transport.receive(Destination.file(path))
        result = await self.foreign.receive_tx(slate, account, message)
        return await transport.send(Destination.file(f"{path}.response"), result, slate.version)

    async def health_check(self) -> dict[str, str]:
        """Status of each session component ('ok', 'error', 'not_initialized')."""
        status = {
            "session": "ok" if self._initialized else "not_initialized",
            "datastore": "unknown",
            "keeper": "unknown",
            "node": "unknown",
            "listener": "stopped",
        }
        if self._initialized:
            status["datastore"] = "ok" if self._datastore and self._datastore.is_open else "error"
            status["keeper"] = (
                "ok" if self._reservations and self._reservations.is_running else "error"
            )
            _, validated = await self.chain_height()
            status["node"] = "ok" if validated else "unreachable"
            if self._listener is not None and self._listener.is_running:
                status["listener"] = "ok"
        return status

    # ------------------------------------------------------------------
    # Seed management
    # ------------------------------------------------------------------

    @staticmethod
    def init_wallet_seed(word_count: int = 24) -> str:
        """A fresh recovery phrase; nothing is written."""
        return WalletSeed.generate(word_count).to_mnemonic()

    @staticmethod
    def wallet_init(config: AppConfig, phrase: str | None = None) -> str:
        """Create the encrypted seed file for ``config``; returns its phrase.

        Raises:
            ConfigError: If ``phrase`` is invalid or no password is configured.
            StorageError: If a wallet already exists at the data directory.
        """
        if not config.wallet.password:
            msg = "a wallet password is required"
            raise ConfigError(msg)
        seed = WalletSeed.from_mnemonic(phrase) if phrase else WalletSeed.generate()
        seed.save(seed_path(config), config.wallet.password)
        return seed.to_mnemonic()

    @classmethod
    def wallet_init_recover(cls, config: AppConfig, phrase: str) -> None:
        """Recreate a wallet from its recovery phrase."""
        cls.wallet_init(config, phrase)

    @staticmethod
    def check_password(config: AppConfig, password: str) -> None:
        """Raises ConfigError if ``password`` does not open the wallet seed."""
        WalletSeed.load(seed_path(config), password)

    @staticmethod
    def get_wallet_mnemonic(config: AppConfig) -> str:
        """The recovery phrase of the configured wallet."""
        return WalletSeed.load(seed_path(config), config.wallet.password).to_mnemonic()

