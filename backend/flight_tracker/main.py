import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from flight_tracker import __version__
from flight_tracker.api import agent, flights, health, jobs
from flight_tracker.config import get_settings
from flight_tracker.container import ServiceContainer

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    container: ServiceContainer = app.state.container
    logger.info(f"Starting flight tracker ({container.settings.execution_mode} execution)")

    try:
        await container.start()
    except Exception as e:
        logger.error(f"Startup failed: {e}")

    yield

    logger.info("Shutting down flight tracker")
    try:
        await container.stop()
    except Exception as e:
        logger.error(f"Shutdown error: {e}")


def create_app(container: Optional[ServiceContainer] = None) -> FastAPI:
    if container is None:
        container = ServiceContainer.build(get_settings())

    app = FastAPI(
        title="Flight Tracker",
        description="Tracks flight prices on a schedule and alerts on drops",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.container = container

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE"],
        allow_headers=["*"],
    )

    app.include_router(health.router, tags=["health"])
    app.include_router(flights.router, prefix="/api/flights", tags=["flights"])
    app.include_router(jobs.router, prefix="/api", tags=["jobs"])
    app.include_router(agent.router, prefix="/api/agent", tags=["agent"])

    # Health check for monitoring/Docker
    @app.get("/ping")
    async def ping():
        return {"status": "ok"}

    return app
