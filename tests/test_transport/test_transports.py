"""Tests for destination parsing and the HTTP and file transports."""

from __future__ import annotations

import json
from typing import Any

import httpx
import pytest

from slate_wallet.errors.definitions import ConfigError, TransportError, ValidationError
from slate_wallet.slate.models import Slate
from slate_wallet.slate.versions import encode_slate
from slate_wallet.transport.base import Destination, DestinationKind
from slate_wallet.transport.file import FileTransport
from slate_wallet.transport.http import FOREIGN_API_PATH, HTTPTransport

PEER = Destination.http("http://peer:3415/")


def _slate(version: int = 3) -> Slate:
    slate = Slate.blank(5_000, 8_000_000, 100)
    slate.version = version
    slate.inputs = ["08aa"]
    return slate


def _rpc(result: Any, status: int = 200) -> httpx.Response:
    return httpx.Response(status, json={"jsonrpc": "2.0", "id": 1, "result": result})


def _foreign(receive, versions=("V3", "V2")):
    """MockTransport handler emulating a foreign API."""
    calls: list[dict[str, Any]] = []

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == FOREIGN_API_PATH
        body = json.loads(request.content)
        calls.append(body)
        if body["method"] == "check_version":
            supported = {"foreign_api_version": 2, "supported_slate_versions": list(versions)}
            return _rpc({"Ok": supported})
        return receive(body["params"])

    return handler, calls


# ---------------------------------------------------------------------------
# Destination
# ---------------------------------------------------------------------------


class TestDestination:
    @pytest.mark.parametrize(
        ("value", "kind", "address"),
        [
            ("http://peer:3415/", DestinationKind.HTTP, "http://peer:3415"),
            ("HTTPS://peer", DestinationKind.HTTP, "HTTPS://peer"),
            ("file:///tmp/a.tx", DestinationKind.FILE, "/tmp/a.tx"),
            ("/tmp/a", DestinationKind.FILE, "/tmp/a"),
            ("./send.slate", DestinationKind.FILE, "./send.slate"),
            ("send.json", DestinationKind.FILE, "send.json"),
            ("C:\\slates\\out", DestinationKind.FILE, "C:\\slates\\out"),
            ("  wallet-bob ", DestinationKind.RELAY, "wallet-bob"),
        ],
    )
    def test_parse(self, value: str, kind: DestinationKind, address: str) -> None:
        dest = Destination.parse(value)
        assert dest.kind is kind
        assert dest.address == address

    def test_empty(self) -> None:
        with pytest.raises(ConfigError, match="empty"):
            Destination.parse("   ")

    def test_str(self) -> None:
        assert str(Destination.relay("bob")) == "relay:bob"


# ---------------------------------------------------------------------------
# HTTP transport
# ---------------------------------------------------------------------------


class TestHTTPTransport:
    async def test_exchange(self) -> None:
        def receive(params):
            data = params[0]
            data["tx"]["body"]["outputs"].append({"features": "Plain", "commit": "08bb"})
            return _rpc({"Ok": data})

        handler, calls = _foreign(receive)
        http = HTTPTransport(transport=httpx.MockTransport(handler))
        slate = _slate()
        reply = await http.exchange(PEER, slate)
        await http.close()

        assert reply.id == slate.id
        assert reply.outputs == ["08bb"]
        assert [c["method"] for c in calls] == ["check_version", "receive_tx"]
        assert calls[1]["params"][1:] == [None, None]
        assert calls[0]["id"] != calls[1]["id"]

    async def test_downgrades_to_common_version(self) -> None:
        def receive(params):
            assert params[0]["version_info"]["version"] == 2
            return _rpc({"Ok": params[0]})

        handler, _ = _foreign(receive, versions=("V2",))
        http = HTTPTransport(transport=httpx.MockTransport(handler))
        reply = await http.exchange(PEER, _slate())
        assert reply.amount == 5_000

    async def test_no_common_version(self) -> None:
        handler, _ = _foreign(lambda params: _rpc({"Ok": {}}), versions=("V4",))
        http = HTTPTransport(transport=httpx.MockTransport(handler))
        with pytest.raises(TransportError, match="no common slate version"):
            await http.exchange(PEER, _slate())

    async def test_err_result(self) -> None:
        handler, _ = _foreign(
            lambda params: _rpc({"Err": {"code": "state-error", "message": "already received"}})
        )
        http = HTTPTransport(transport=httpx.MockTransport(handler))
        with pytest.raises(TransportError, match="already received"):
            await http.exchange(PEER, _slate())

    async def test_rpc_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200, json={"jsonrpc": "2.0", "id": 1, "error": {"code": -32601, "message": "nope"}}
            )

        http = HTTPTransport(transport=httpx.MockTransport(handler))
        with pytest.raises(TransportError, match="nope"):
            await http.check_version(PEER)

    async def test_http_status(self) -> None:
        http = HTTPTransport(transport=httpx.MockTransport(lambda r: httpx.Response(503)))
        with pytest.raises(TransportError, match="HTTP 503"):
            await http.exchange(PEER, _slate())

    async def test_not_json(self) -> None:
        not_json = httpx.MockTransport(lambda r: httpx.Response(200, text="<html>"))
        http = HTTPTransport(transport=not_json)
        with pytest.raises(TransportError, match="not JSON"):
            await http.check_version(PEER)

    async def test_no_result(self) -> None:
        http = HTTPTransport(transport=httpx.MockTransport(lambda r: httpx.Response(200, json={})))
        with pytest.raises(TransportError, match="no result"):
            await http.check_version(PEER)

    async def test_timeout(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            msg = "slow"
            raise httpx.ReadTimeout(msg, request=request)

        http = HTTPTransport(timeout=1.5, transport=httpx.MockTransport(handler))
        with pytest.raises(TransportError, match="timed out after 1.5s"):
            await http.exchange(PEER, _slate())

    async def test_malformed_reply(self) -> None:
        handler, _ = _foreign(lambda params: _rpc({"Ok": {"id": "x"}}))
        http = HTTPTransport(transport=httpx.MockTransport(handler))
        with pytest.raises(TransportError, match="malformed reply"):
            await http.exchange(PEER, _slate())

    async def test_reply_for_other_slate(self) -> None:
        handler, _ = _foreign(lambda params: _rpc({"Ok": encode_slate(_slate())}))
        http = HTTPTransport(transport=httpx.MockTransport(handler))
        with pytest.raises(TransportError, match="expected"):
            await http.exchange(PEER, _slate())

    async def test_wrong_destination_kind(self) -> None:
        http = HTTPTransport()
        with pytest.raises(TransportError, match="cannot reach"):
            await http.exchange(Destination.relay("bob"), _slate())


# ---------------------------------------------------------------------------
# File transport
# ---------------------------------------------------------------------------


class TestFileTransport:
    async def test_send_and_receive(self, tmp_path) -> None:
        files = FileTransport()
        slate = _slate()
        path = await files.send(str(tmp_path / "nested" / "out.tx"), slate, 2)
        assert path.exists()
        assert json.loads(path.read_text(encoding="utf-8"))["amount"] == "5000"
        again = await files.receive(Destination.file(str(path)))
        assert again.id == slate.id
        assert again.version == 2
        assert not (tmp_path / "nested" / "out.tx.tmp").exists()

    def test_not_synchronous(self) -> None:
        assert not FileTransport().supports_sync

    async def test_exchange_refused(self, tmp_path) -> None:
        with pytest.raises(TransportError, match="one-way"):
            await FileTransport().exchange(Destination.file(str(tmp_path / "x")), _slate())

    async def test_missing_file(self, tmp_path) -> None:
        with pytest.raises(TransportError, match="cannot read"):
            await FileTransport().receive(str(tmp_path / "missing.tx"))

    async def test_not_utf8(self, tmp_path) -> None:
        path = tmp_path / "bad.tx"
        path.write_bytes(b"\xff\xfe{not utf8")
        with pytest.raises(ValidationError, match="UTF-8"):
            await FileTransport().receive(str(path))

    async def test_invalid_content(self, tmp_path) -> None:
        path = tmp_path / "bad.tx"
        path.write_text("{}", encoding="utf-8")
        with pytest.raises(ValidationError):
            await FileTransport().receive(str(path))
