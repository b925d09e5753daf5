"""Entry point: ``python -m webhook_relay`` or the ``webhook-relay`` script."""

from __future__ import annotations

import logging

import uvicorn

from webhook_relay.api import create_app
from webhook_relay.config import get_settings


def main() -> None:
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logging.getLogger(__name__).info(
        "Starting webhook relay server on %s:%d", settings.host, settings.port
    )
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
