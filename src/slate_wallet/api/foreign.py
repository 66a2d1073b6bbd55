"""Foreign listener: the HTTP face of the receiver workflow.

JSON-RPC 2.0 at ``POST /v2/foreign``:
- ``check_version``  supported foreign API and slate versions
- ``receive_tx``     params ``[slate, dest_acct_name, message]``

Method results are wrapped as ``{"Ok": ...}`` or ``{"Err": {...}}``.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from prometheus_client import generate_latest
from starlette.responses import Response

from slate_wallet import __version__
from slate_wallet.config.settings import AppConfig
from slate_wallet.engine.client import WalletSession
from slate_wallet.errors.wallet_errors import WalletError
from slate_wallet.slate.versions import SUPPORTED_VERSIONS, decode_slate, encode_slate

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

logger = logging.getLogger(__name__)

FOREIGN_API_VERSION = 2

# JSON-RPC error codes
_PARSE_ERROR = -32700
_INVALID_REQUEST = -32600
_METHOD_NOT_FOUND = -32601
_INVALID_PARAMS = -32602


@asynccontextmanager
async def _lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Initialise the wallet session on startup unless one was handed in."""
    session: WalletSession = app.state.session
    owned = not session.is_initialized
    try:
        if owned:
            await session.initialize()
        if app.state.listen_relay:
            address = await session.listen()
            logger.info("Relay listener serving %s", address)
        logger.info("Foreign listener ready")
        yield
    finally:
        if owned:
            await session.close()
        elif app.state.listen_relay:
            await session.stop_listening()
        logger.info("Foreign listener shut down")


def _rpc_error(request_id: Any, code: int, message: str) -> JSONResponse:
    return JSONResponse(
        {"jsonrpc": "2.0", "id": request_id, "error": {"code": code, "message": message}}
    )


def _rpc_result(request_id: Any, result: dict[str, Any]) -> JSONResponse:
    return JSONResponse({"jsonrpc": "2.0", "id": request_id, "result": result})


async def _receive_tx(session: WalletSession, params: list[Any]) -> dict[str, Any]:
    if not params:
        msg = "receive_tx needs a slate"
        raise TypeError(msg)
    slate = decode_slate(params[0])
    account = params[1] if len(params) > 1 else None
    message = params[2] if len(params) > 2 else None
    result = await session.foreign.receive_tx(slate, account, message)
    return encode_slate(result, slate.version)


def create_app(
    *,
    config: AppConfig | None = None,
    session: WalletSession | None = None,
    listen_relay: bool = False,
) -> FastAPI:
    """Build and return the FastAPI application.

    Args:
        config: Optional AppConfig. If *None*, a default config is created
            from environment variables.
        session: An existing session to serve; it stays open after shutdown.
        listen_relay: Also start the relay listener for the app's lifetime.
    """
    if session is None:
        session = WalletSession(config or AppConfig())

    app = FastAPI(
        title="py-slate foreign API",
        version=__version__,
        description="Receives and countersigns slates for this wallet",
        lifespan=_lifespan,
    )
    app.state.session = session
    app.state.listen_relay = listen_relay

    # -- Error handler --
    @app.exception_handler(WalletError)
    async def _wallet_error_handler(request: Request, exc: WalletError) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    # -- Base routes --
    @app.get("/health", tags=["base"])
    async def health() -> dict[str, str]:
        return await session.health_check()

    @app.get("/metrics", tags=["base"], include_in_schema=False)
    async def metrics_endpoint() -> Response:
        """Prometheus metrics endpoint."""
        registry = session.metrics.registry if session.metrics is not None else None
        body = generate_latest(registry) if registry else generate_latest()
        return Response(
            content=body,
            media_type="text/plain; version=0.0.4; charset=utf-8",
        )

    # -- JSON-RPC --
    @app.post("/v2/foreign", tags=["foreign"])
    async def foreign_rpc(request: Request) -> JSONResponse:
        try:
            body = await request.json()
        except ValueError:
            return _rpc_error(None, _PARSE_ERROR, "Parse error")
        if not isinstance(body, dict) or not isinstance(body.get("method"), str):
            return _rpc_error(None, _INVALID_REQUEST, "Invalid request")

        request_id = body.get("id")
        method = body["method"]
        params = body.get("params") or []
        if not isinstance(params, list):
            return _rpc_error(request_id, _INVALID_PARAMS, "params must be a list")

        if method == "check_version":
            return _rpc_result(
                request_id,
                {
                    "Ok": {
                        "foreign_api_version": FOREIGN_API_VERSION,
                        "supported_slate_versions": [
                            f"V{v}" for v in sorted(SUPPORTED_VERSIONS, reverse=True)
                        ],
                    }
                },
            )
        if method == "receive_tx":
            try:
                return _rpc_result(request_id, {"Ok": await _receive_tx(session, params)})
            except WalletError as exc:
                logger.warning("receive_tx rejected: %s", exc.message)
                return _rpc_result(request_id, {"Err": exc.to_dict()})
            except TypeError as exc:
                return _rpc_error(request_id, _INVALID_PARAMS, str(exc))
        return _rpc_error(request_id, _METHOD_NOT_FOUND, f"Method not found: {method}")

    return app
