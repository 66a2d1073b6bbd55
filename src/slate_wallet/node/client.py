"""Chain node client: height queries and transaction broadcast.

The HTTP implementation talks to the node's v1 REST API:
- GET  /v1/chain          chain tip (height)
- POST /v1/pool/push_tx   submit a finalized transaction
"""

from __future__ import annotations

import abc
import logging
from typing import TYPE_CHECKING, Any

import httpx

from slate_wallet.errors.definitions import BroadcastError, TransportError

if TYPE_CHECKING:
    from pathlib import Path

    from slate_wallet.config.settings import WalletConfig

logger = logging.getLogger(__name__)

_NODE_API_USER = "grin"


class NodeClient(abc.ABC):
    """What the wallet needs from a chain node."""

    async def connect(self) -> None:  # noqa: B027
        """Open any underlying connection."""

    async def close(self) -> None:  # noqa: B027
        """Release any underlying connection."""

    @abc.abstractmethod
    async def chain_height(self) -> int:
        """Current chain tip height.

        Raises:
            TransportError: If the node cannot be reached.
        """

    @abc.abstractmethod
    async def broadcast(self, tx: dict[str, Any], *, fluff: bool = False) -> None:
        """Submit a finalized transaction.

        Raises:
            BroadcastError: If the node rejects the transaction or is unreachable.
        """


def read_api_secret(path: Path) -> str | None:
    """First line of the node API secret file, or None when absent."""
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    lines = text.splitlines()
    return lines[0].strip() if lines else None


class HTTPNodeClient(NodeClient):
    """Async HTTP client for the node REST API.

    Usage::

        node = HTTPNodeClient.from_config(wallet_config)
        await node.connect()
        try:
            height = await node.chain_height()
        finally:
            await node.close()
    """

    def __init__(
        self,
        base_url: str,
        *,
        api_secret: str | None = None,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._api_secret = api_secret
        self._timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @classmethod
    def from_config(
        cls,
        config: WalletConfig,
        *,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> HTTPNodeClient:
        return cls(
            config.node_api_addr,
            api_secret=read_api_secret(config.node_api_secret_path),
            timeout=timeout,
            transport=transport,
        )

    async def connect(self) -> None:
        """Create the underlying HTTP client."""
        auth = httpx.BasicAuth(_NODE_API_USER, self._api_secret) if self._api_secret else None
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            headers={"Content-Type": "application/json"},
            auth=auth,
            timeout=self._timeout,
            transport=self._transport,
        )

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    @property
    def is_connected(self) -> bool:
        return self._client is not None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def chain_height(self) -> int:
        client = self._ensure_connected()
        try:
            response = await client.get("/v1/chain")
        except httpx.HTTPError as exc:
            msg = f"node unreachable at {self._base_url}: {exc}"
            raise TransportError(msg) from exc
        if response.status_code != 200:
            msg = f"node chain query failed ({response.status_code})"
            raise TransportError(msg)
        try:
            return int(response.json()["height"])
        except (ValueError, KeyError, TypeError) as exc:
            msg = f"malformed chain tip from node: {response.text[:200]}"
            raise TransportError(msg) from exc

    async def broadcast(self, tx: dict[str, Any], *, fluff: bool = False) -> None:
        client = self._ensure_connected()
        params = {"fluff": "true"} if fluff else None
        try:
            response = await client.post("/v1/pool/push_tx", json=tx, params=params)
        except httpx.HTTPError as exc:
            msg = f"node unreachable at {self._base_url}: {exc}"
            raise BroadcastError(msg) from exc
        if response.status_code != 200:
            detail = response.text[:200] or response.reason_phrase
            msg = f"node rejected transaction ({response.status_code}): {detail}"
            raise BroadcastError(msg)
        logger.info("Transaction pushed to node %s", self._base_url)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _ensure_connected(self) -> httpx.AsyncClient:
        if self._client is None:
            msg = "Node client not connected. Call connect() first."
            raise RuntimeError(msg)
        return self._client
