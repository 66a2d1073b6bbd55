"""Offline file transport: slates written to and read from disk.

The two halves of a file exchange are separate, manually sequenced
operations, so there is no round trip to correlate.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import TYPE_CHECKING

from slate_wallet.errors.definitions import TransportError, ValidationError
from slate_wallet.slate.versions import slate_from_json, slate_to_json
from slate_wallet.transport.base import Destination, DestinationKind, Transport

if TYPE_CHECKING:
    from slate_wallet.slate.models import Slate

logger = logging.getLogger(__name__)


class FileTransport(Transport):
    kind = DestinationKind.FILE

    @property
    def supports_sync(self) -> bool:
        return False

    async def exchange(self, destination: Destination, slate: Slate) -> Slate:
        msg = "file transport is one-way; write the slate and finalize the response file later"
        raise TransportError(msg)

    async def send(
        self, destination: Destination | str, slate: Slate, version: int | None = None
    ) -> Path:
        """Write ``slate`` to the destination path.

        Raises:
            TransportError: If the file cannot be written.
        """
        path = self._path(destination)
        text = slate_to_json(slate, version)
        tmp = path.with_name(path.name + ".tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_text(text, encoding="utf-8")
            os.replace(tmp, path)
        except OSError as exc:
            msg = f"cannot write slate file {path}: {exc}"
            raise TransportError(msg) from exc
        logger.info("Slate %s written to %s", slate.id, path)
        return path

    async def receive(self, destination: Destination | str) -> Slate:
        """Read a slate from the destination path.

        Raises:
            TransportError: If the file cannot be read.
            ValidationError: If the file does not hold a valid slate.
        """
        path = self._path(destination)
        try:
            text = path.read_text(encoding="utf-8")
        except OSError as exc:
            msg = f"cannot read slate file {path}: {exc}"
            raise TransportError(msg) from exc
        except UnicodeDecodeError as exc:
            msg = f"slate file {path} is not valid UTF-8: {exc}"
            raise ValidationError(msg) from exc
        return slate_from_json(text)

    def _path(self, destination: Destination | str) -> Path:
        if isinstance(destination, str):
            destination = Destination.file(destination)
        self._check_kind(destination)
        return Path(destination.address).expanduser()
