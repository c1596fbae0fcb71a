"""Flask application factory."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from flask import Flask

if TYPE_CHECKING:
    from aclauth.core.config import AppConfig
    from aclauth.core.oidc.service import OIDCAuthService

logger = logging.getLogger(__name__)


def create_app(config: dict | None = None, service: OIDCAuthService | None = None) -> Flask:
    """Create and configure the Flask application.

    Args:
        config: Optional configuration dictionary to override defaults.
        service: Login service to serve. Built from the loaded application
            configuration when not provided.

    Returns:
        Configured Flask application instance.
    """
    app = Flask(__name__)

    if config:
        app.config.from_mapping(config)

    if service is None:
        from aclauth.core.config import load_config
        from aclauth.core.oidc.service import OIDCAuthService

        service = OIDCAuthService.from_config(load_config())

    app.extensions["aclauth"] = service

    from aclauth.web import routes

    routes.init_app(app)

    return app


def run_server(
    app_config: AppConfig | None = None,
    host: str | None = None,
    port: int | None = None,
) -> None:
    """Run the Flask development server.

    Args:
        app_config: Application configuration. Loads from file/env if not provided.
        host: Override host from config.
        port: Override port from config.
    """
    from aclauth.core.config import load_config
    from aclauth.core.logging import configure_logging
    from aclauth.core.oidc.service import OIDCAuthService

    if app_config is None:
        app_config = load_config()

    configure_logging(
        level=app_config.logging.level,
        trace_enabled=app_config.logging.trace_enabled,
        log_file=app_config.logging.log_file,
    )

    server_host = host or app_config.server.host
    server_port = port or app_config.server.port

    service = OIDCAuthService.from_config(app_config)
    app = create_app(service=service)
    app.debug = app_config.server.debug

    logger.info(f"Starting aclauth server on http://{server_host}:{server_port}")
    app.run(host=server_host, port=server_port)


if __name__ == "__main__":
    run_server()
