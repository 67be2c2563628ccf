"""
FastAPI application for the deal dashboard backend.
"""

import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request

from dealboard.config import settings
from dealboard.infrastructure.observability.logging import get_logger, log_request, setup_logging
from dealboard.routes import deals, health, next_steps
from dealboard.services.container import ServiceContainer

# Setup logging before creating the app
setup_logging(log_level=settings.LOG_LEVEL, json_output=not settings.debug)
logger = get_logger(__name__)


def create_app(container: ServiceContainer | None = None) -> FastAPI:
    """
    Build the application. Passing a container skips building one from
    settings; its start/stop are still driven by the lifespan.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Handle application startup and shutdown with proper resource management."""
        logger.info("Application starting", environment=settings.environment, debug=settings.debug)

        services = container or ServiceContainer.build(settings)
        try:
            await services.start()
        except Exception as e:
            logger.error("Failed to initialize services", error=str(e))
            raise

        app.state.container = services
        logger.info("All services initialized successfully", backing=services.backing.name)

        yield

        logger.info("Application shutting down")
        try:
            await services.stop()
            logger.info("All services closed successfully")
        except Exception as e:
            logger.error("Error closing services", error=str(e))

    app = FastAPI(
        title="Deal Dashboard",
        description="Cached CRM deal pipeline with AI next-step suggestions",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.include_router(health.router)
    app.include_router(deals.router)
    app.include_router(next_steps.router)

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        """Log HTTP requests with timing."""
        start_time = time.time()
        response = await call_next(request)
        process_time = (time.time() - start_time) * 1000
        log_request(request.method, request.url.path, response.status_code, round(process_time, 2))
        return response

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
