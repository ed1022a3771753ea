"""
FastAPI application factory for the push server.

Every worker process calls create_app() once and gets its own PushServer.
"""

from fastapi import FastAPI

from ..api.router import push_router
from ..config import AppConfig, get_config
from ..handlers.registry import HandlerRegistry
from ..server import PushServer
from ..structured_logging.enhanced_logging_config import get_logger, setup_enhanced_logging
from .lifespan import lifespan

logger = get_logger(__name__)


def create_app(config: AppConfig | None = None, registry: HandlerRegistry | None = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        config: Application configuration (defaults to get_config())
        registry: Pre-populated handler registry (defaults to the configured handlers)

    Returns:
        FastAPI: The configured FastAPI application instance
    """
    if config is None:
        config = get_config()

    setup_enhanced_logging(config.to_legacy_dict())

    app = FastAPI(
        title="Push Server",
        description="Server-sent event push notifications with polled change detection",
        version="0.1.0",
        lifespan=lifespan,
        # Every path belongs to the dispatcher
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.state.push_server = PushServer(config, registry)
    app.include_router(push_router)

    logger.info(
        "Push server application created",
        handlers=app.state.push_server.registry.names(),
        cors_origin=config.cors.allow_origin,
    )
    return app
