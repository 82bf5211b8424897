"""FlashGate operator application."""

import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI

from flashgate import __version__
from flashgate.api.deps import close_kube_client, validate_auth_config
from flashgate.api.router import router
from flashgate.config import settings
from flashgate.db.base import close_db, init_db

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger("flashgate")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    logger.info("Starting FlashGate operator...")
    logger.info(f"Environment: {settings.env.value}")
    logger.info(
        f"Handling FlashCluster {settings.namespace}/{settings.cluster_config_name} "
        f"for nodes labeled {settings.node_selector_label}"
    )

    # Fail fast on insecure auth configuration
    validate_auth_config()

    await init_db()
    logger.info("Database initialized")

    yield

    logger.info("Shutting down FlashGate operator...")
    await close_kube_client()
    await close_db()
    logger.info("Shutdown complete")


app = FastAPI(
    title="FlashGate",
    description="Lease-gated firmware updates for cluster accelerator cards",
    version=__version__,
    lifespan=lifespan,
)

app.include_router(router)


def main():
    """Entry point for the operator."""
    uvicorn.run(
        "flashgate.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
