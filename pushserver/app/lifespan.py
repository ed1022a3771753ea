"""Application lifecycle management for the push server.

Starts the worker's PushServer background loops on startup and runs its
shutdown when the application stops.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI

from ..structured_logging.enhanced_logging_config import get_logger

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    The uvicorn server normally runs the push server's shutdown before it
    drains connections; the call here covers other hosts and is a no-op when
    that already happened.
    """
    push_server = app.state.push_server
    logger.info("Starting push server worker")
    await push_server.start()
    yield

    logger.info("Shutting down push server worker")
    await push_server.shutdown()
