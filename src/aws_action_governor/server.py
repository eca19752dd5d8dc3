"""Entrypoint for the AWS action governor HTTP server."""

from __future__ import annotations

import logging

from aws_action_governor import __version__
from aws_action_governor.config import load_settings
from aws_action_governor.logging_utils import configure_logging


def run_entrypoint() -> None:
    """Configure logging and serve the HTTP application with uvicorn."""
    settings = load_settings()
    configure_logging(settings.logging)
    from aws_action_governor.transport.http_server import create_http_app

    import uvicorn

    logging.info("Initializing AWS action governor v%s", __version__)
    logging.info("Log file configured at: %s", settings.logging.file)
    app = create_http_app()
    # Plain JSON over HTTP; no websocket endpoints.
    uvicorn.run(
        app,
        host=settings.server.host,
        port=settings.server.port,
        ws="none",
        log_config=None,
    )


if __name__ == "__main__":  # pragma: no cover
    run_entrypoint()
