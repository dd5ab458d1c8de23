# driveschool/main.py
from __future__ import annotations

from contextlib import asynccontextmanager
import logging
from typing import AsyncGenerator, Optional

from fastapi import APIRouter, FastAPI

from .core.config import is_running_tests, settings
from .core.constants import API_DESCRIPTION, API_PREFIX, API_TITLE, API_VERSION, BRAND_NAME
from .database import init_db
from .dependencies import ServiceContainer, build_container
from .errors import register_error_handlers
from .routes import content, health, working_hours

# Configure logging
logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

logger = logging.getLogger(__name__)


def create_app(container: Optional[ServiceContainer] = None) -> FastAPI:
    """
    Build the API application.

    Pass a prepared ``container`` to run against test doubles; otherwise the
    default graph is built from settings at startup.
    """

    @asynccontextmanager
    async def app_lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Handle application startup/shutdown without deprecated events."""
        logger.info(f"{BRAND_NAME} API starting up...")
        logger.info(f"Environment: {settings.environment}")
        if is_running_tests():
            logger.info("Running under pytest (test mode active)")

        owned = container is None
        app.state.container = container or build_container()
        if owned:
            init_db(app.state.container.engine)
        try:
            yield
        finally:
            logger.info(f"{BRAND_NAME} API shutting down...")
            if owned:
                await app.state.container.close()

    app = FastAPI(
        title=API_TITLE,
        description=API_DESCRIPTION,
        version=API_VERSION,
        lifespan=app_lifespan,
    )
    register_error_handlers(app)

    api_v1 = APIRouter(prefix=API_PREFIX)
    api_v1.include_router(content.router, prefix="/content")
    api_v1.include_router(working_hours.router, prefix="/instructors")
    api_v1.include_router(health.router)
    app.include_router(api_v1)
    return app


app = create_app()
