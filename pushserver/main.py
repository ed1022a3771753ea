"""
Push server entry point.

Starts a pool of uvicorn worker processes sharing one listening socket.
Each worker imports ``pushserver.main:create_app`` in factory mode and so
builds its own independent PushServer.
"""

import sys
from pathlib import Path
from typing import Any

import uvicorn
from uvicorn.supervisors import Multiprocess

from .app.factory import create_app
from .config import AppConfig, get_config
from .exceptions import ConfigurationError
from .structured_logging.enhanced_logging_config import get_logger, setup_enhanced_logging

logger = get_logger(__name__)

APP_FACTORY = "pushserver.main:create_app"

__all__ = ["create_app", "PushUvicornServer", "build_uvicorn_config", "main"]


def _find_push_server(app: Any) -> Any:
    """Unwrap uvicorn/Starlette middleware layers down to the app holding the push server."""
    seen = set()
    while app is not None and id(app) not in seen:
        seen.add(id(app))
        state = getattr(app, "state", None)
        push_server = getattr(state, "push_server", None) if state is not None else None
        if push_server is not None:
            return push_server
        app = getattr(app, "app", None)
    return None


class PushUvicornServer(uvicorn.Server):
    """
    uvicorn server that ends event streams before draining connections.

    uvicorn waits for open responses to finish before running the lifespan
    shutdown, and event streams never finish on their own, so the push
    server's shutdown runs first here.
    """

    async def shutdown(self, sockets: list | None = None) -> None:
        push_server = _find_push_server(getattr(self.config, "loaded_app", None))
        if push_server is not None:
            await push_server.shutdown()
        await super().shutdown(sockets=sockets)


def build_uvicorn_config(config: AppConfig) -> uvicorn.Config:
    """
    Translate AppConfig into a uvicorn.Config.

    Raises:
        ConfigurationError: If TLS is enabled and a certificate or key file is missing
    """
    server = config.server
    ssl_options: dict[str, Any] = {}
    if server.ssl_enabled:
        for key, path in (("ssl_cert_file", server.ssl_cert_file), ("ssl_key_file", server.ssl_key_file)):
            if not path or not Path(path).is_file():
                raise ConfigurationError(f"TLS file not found: {path}", config_key=f"server.{key}")
        ssl_options = {"ssl_certfile": server.ssl_cert_file, "ssl_keyfile": server.ssl_key_file}

    return uvicorn.Config(
        APP_FACTORY,
        factory=True,
        host=server.host,
        port=server.port,
        workers=server.worker_count,
        timeout_graceful_shutdown=int(server.graceful_shutdown_timeout),
        log_config=None,
        log_level=config.logging.level.lower(),
        access_log=False,
        **ssl_options,
    )


def main() -> None:
    """Start the push server with the current configuration."""
    config = get_config()
    setup_enhanced_logging(config.to_legacy_dict())

    try:
        uvicorn_config = build_uvicorn_config(config)
    except ConfigurationError as e:
        print(f"Error starting server: {e}", file=sys.stderr)
        sys.exit(1)

    logger.info(
        "Starting push server",
        host=config.server.host,
        port=config.server.port,
        workers=config.server.worker_count,
        ssl=config.server.ssl_enabled,
    )

    server = PushUvicornServer(uvicorn_config)
    try:
        if uvicorn_config.workers > 1:
            sock = uvicorn_config.bind_socket()
            Multiprocess(uvicorn_config, target=server.run, sockets=[sock]).run()
        else:
            server.run()
    except KeyboardInterrupt:
        logger.info("Server shutdown requested by user")


if __name__ == "__main__":
    main()
