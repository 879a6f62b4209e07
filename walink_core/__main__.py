"""Run the walink HTTP service: ``python -m walink_core``."""

from __future__ import annotations

import logging
import sys

from aiohttp import web
from pydantic import ValidationError

from .api import CONTROLLER_KEY, create_app
from .config import ServiceSettings
from .controller import SessionController
from .credentials import FileCredentialStore
from .transport.bridge import BridgeClientFactory

_LOGGER = logging.getLogger("walink_core")


def build_app(settings: ServiceSettings) -> web.Application:
    """Wire the credential store, bridge factory and controller into an app."""
    config = settings.to_session_config()
    store = FileCredentialStore(settings.session_path)
    factory = BridgeClientFactory(
        settings.bridge_host,
        settings.bridge_port,
        path=settings.bridge_path,
        token=(
            settings.bridge_token.get_secret_value()
            if settings.bridge_token is not None
            else None
        ),
        connect_timeout=config.connect_timeout,
        request_timeout=config.send_timeout,
    )
    controller = SessionController(store, factory, config=config)
    app = create_app(controller, auth_token=settings.auth_token.get_secret_value())

    async def _on_startup(app: web.Application) -> None:
        await app[CONTROLLER_KEY].start()
        if settings.auto_init:
            _LOGGER.info("Auto-init enabled, connecting at startup")
            await app[CONTROLLER_KEY].init()

    async def _on_cleanup(app: web.Application) -> None:
        await app[CONTROLLER_KEY].shutdown()

    app.on_startup.append(_on_startup)
    app.on_cleanup.append(_on_cleanup)
    return app


def main() -> None:
    try:
        settings = ServiceSettings()
    except ValidationError as err:
        print(f"Invalid configuration:\n{err}", file=sys.stderr)
        sys.exit(2)

    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    _LOGGER.info(
        "Starting walink on %s:%s (bridge %s:%s)",
        settings.host,
        settings.port,
        settings.bridge_host,
        settings.bridge_port,
    )
    web.run_app(build_app(settings), host=settings.host, port=settings.port, print=None)


if __name__ == "__main__":
    main()
