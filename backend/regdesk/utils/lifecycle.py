# /regdesk/utils/lifecycle.py

import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI

from regdesk.utils.logging import setup_logging
from regdesk.utils.alerting import alerting_service
from regdesk.utils.scheduler import session_sweeper
from regdesk.flows.engine import flow_engine
from regdesk.services.session_store import session_store
from regdesk.services.submission_gateway import submission_gateway
from regdesk.services.whatsapp_service import whatsapp_service
from regdesk.config.settings import settings

# Startup and shutdown of the service: logging, session backend, idle sweep,
# and closing outbound HTTP clients.

logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup and shutdown events."""
    setup_logging()

    logger.info("Application starting up...")
    # The flow definition was validated when the engine was built; reaching
    # this point means it is consistent.
    logger.info(f"Flow definition loaded: {len(flow_engine.flow)} nodes, {len(flow_engine.flow.branches())} service branches.")

    if not await session_store.ping():
        logger.error(f"Session backend '{settings.session_backend}' did not answer ping.")

    session_sweeper.start()

    logger.info("Application startup complete. Ready to accept requests.")

    yield  # Application is now running

    logger.info("Application shutting down...")

    session_sweeper.stop()
    await whatsapp_service.close()
    await submission_gateway.close()
    await alerting_service.cleanup()
    await session_store.close()
