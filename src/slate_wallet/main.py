"""Application entry point: serve the foreign listener and the relay listener."""

from __future__ import annotations

import logging
import os

import uvicorn

from slate_wallet.api.foreign import create_app
from slate_wallet.config.settings import AppConfig


def main() -> None:
    """Start the wallet's foreign listener.

    Configuration comes from ``SLATEWALLET_*`` environment variables and the
    YAML file named by ``SLATEWALLET_CONFIG_PATH``.
    """
    config = AppConfig()
    logging.basicConfig(
        level=logging.DEBUG if config.debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    listen_relay = os.getenv("SLATEWALLET_LISTEN_RELAY", "true").lower() in ("1", "true", "yes")
    app = create_app(config=config, listen_relay=listen_relay and config.relay.enabled)
    uvicorn.run(
        app,
        host=config.server.host,
        port=config.server.port,
        log_level="debug" if config.debug else "info",
    )


if __name__ == "__main__":
    main()
