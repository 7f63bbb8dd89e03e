from contextlib import asynccontextmanager

from fastapi import FastAPI

from agencyops.core.circuit_breaker import CircuitBreakerRegistry
from agencyops.core.config import settings
from agencyops.core.logging_config import get_logger
from agencyops.wiring import build_services

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logger.info("=" * 50)
    logger.info(f"{settings.PROJECT_NAME} starting", environment=settings.ENVIRONMENT)
    logger.info("=" * 50)

    services = build_services()
    app.state.services = services
    if settings.RUN_SCHEDULER:
        services.scheduler.start()
    else:
        logger.info("RUN_SCHEDULER is false - skipping scheduler startup in this process.")

    try:
        yield
    finally:
        # Shutdown
        await services.aclose()


app = FastAPI(title=settings.PROJECT_NAME, lifespan=lifespan)


@app.get("/health")
def health():
    """Basic health check endpoint."""
    return {"status": "healthy"}


@app.get("/health/circuits")
def health_circuits():
    """Current state of every outbound circuit breaker."""
    states = CircuitBreakerRegistry.get_all_states()
    degraded = [name for name, state in states.items() if state != "closed"]
    return {
        "status": "degraded" if degraded else "healthy",
        "circuits": states,
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
