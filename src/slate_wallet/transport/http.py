"""Synchronous point-to-point transport over the foreign JSON-RPC API.

Calls the counterparty's ``/v2/foreign`` endpoint:
- ``check_version``  which slate versions the receiver accepts
- ``receive_tx``     countersign the slate and return it
"""

from __future__ import annotations

import itertools
import logging
from typing import TYPE_CHECKING, Any

import httpx

from slate_wallet.errors.definitions import TransportError
from slate_wallet.errors.wallet_errors import WalletError
from slate_wallet.slate.versions import SUPPORTED_VERSIONS, decode_slate, encode_slate
from slate_wallet.transport.base import Destination, DestinationKind, Transport

if TYPE_CHECKING:
    from slate_wallet.slate.models import Slate

logger = logging.getLogger(__name__)

FOREIGN_API_PATH = "/v2/foreign"


class HTTPTransport(Transport):
    """JSON-RPC client for a counterparty's foreign listener.

    Usage::

        http = HTTPTransport(timeout=30)
        reply = await http.exchange(Destination.http("http://peer:3415"), slate)
        await http.close()
    """

    kind = DestinationKind.HTTP

    def __init__(
        self,
        *,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._ids = itertools.count(1)

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def exchange(self, destination: Destination, slate: Slate) -> Slate:
        self._check_kind(destination)
        url = destination.address + FOREIGN_API_PATH

        version = slate.version
        supported = await self.check_version(destination)
        if version not in supported:
            common = [v for v in supported if v in SUPPORTED_VERSIONS]
            if not common:
                msg = f"receiver at {destination.address} supports no common slate version"
                raise TransportError(msg)
            version = max(common)
            logger.info("Receiver only accepts slate v%s; downgrading", version)

        result = await self._call(url, "receive_tx", [encode_slate(slate, version), None, None])
        try:
            reply = decode_slate(result)
        except WalletError as exc:
            msg = f"malformed reply from {destination.address}: {exc.message}"
            raise TransportError(msg) from exc
        if reply.id != slate.id:
            msg = f"reply from {destination.address} is for slate {reply.id}, expected {slate.id}"
            raise TransportError(msg)
        return reply

    async def check_version(self, destination: Destination) -> list[int]:
        """Slate versions the receiver accepts.

        Raises:
            TransportError: If the receiver is unreachable or replies badly.
        """
        self._check_kind(destination)
        result = await self._call(destination.address + FOREIGN_API_PATH, "check_version", [])
        try:
            versions = result["supported_slate_versions"]
            return sorted(int(str(v).lstrip("Vv")) for v in versions)
        except (KeyError, TypeError, ValueError) as exc:
            msg = f"malformed check_version reply from {destination.address}"
            raise TransportError(msg) from exc

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout, transport=self._transport)
        return self._client

    async def _call(self, url: str, method: str, params: list[Any]) -> Any:
        request_id = next(self._ids)
        body = {"jsonrpc": "2.0", "id": request_id, "method": method, "params": params}
        try:
            response = await self._ensure_client().post(url, json=body)
        except httpx.TimeoutException as exc:
            msg = f"{method} to {url} timed out after {self._timeout}s"
            raise TransportError(msg) from exc
        except httpx.HTTPError as exc:
            msg = f"{method} to {url} failed: {exc}"
            raise TransportError(msg) from exc

        if response.status_code != 200:
            msg = f"{method} to {url} returned HTTP {response.status_code}"
            raise TransportError(msg)
        try:
            payload = response.json()
        except ValueError as exc:
            msg = f"{method} reply from {url} is not JSON"
            raise TransportError(msg) from exc
        if not isinstance(payload, dict):
            msg = f"{method} reply from {url} is not a JSON-RPC response"
            raise TransportError(msg)
        if payload.get("error"):
            error = payload["error"]
            detail = error.get("message") if isinstance(error, dict) else error
            msg = f"{method} rejected by {url}: {detail}"
            raise TransportError(msg)

        result = payload.get("result")
        if isinstance(result, dict) and "Err" in result:
            msg = f"{method} rejected by {url}: {result['Err']}"
            raise TransportError(msg)
        if isinstance(result, dict) and "Ok" in result:
            return result["Ok"]
        msg = f"{method} reply from {url} has no result"
        raise TransportError(msg)
