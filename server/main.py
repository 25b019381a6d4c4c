"""FastAPI server for the AG Sudoku progression engine."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from config import config
from logging_config import setup_logging
from routers.health import router as health_router
from routers.health import set_health_dependencies
from routers.progress import router as progress_router
from routers.progress import set_progression_service
from services.progression_service import ProgressionService
from stores.kv_store import create_kv_store
from stores.remote_ledger import close_remote_ledger, get_remote_ledger

# Configure logging based on environment
setup_logging(
    level=config.LOG_LEVEL,
    environment=config.ENVIRONMENT,
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for async service initialization."""
    kv_store = create_kv_store(config.STORAGE_BACKEND, config.DATA_DIR)

    try:
        remote_ledger = await get_remote_ledger(config.DATABASE_URL)
    except Exception as e:
        logger.error(f"Failed to initialize remote ledger: {e}")
        raise

    progression = ProgressionService.create(
        kv_store,
        remote_ledger,
        key_prefix=config.KEY_PREFIX,
        policy=config.xp_policy,
        remote_timeout=config.REMOTE_TIMEOUT_SECONDS,
    )
    status = await progression.status()
    set_progression_service(progression)
    set_health_dependencies(kv_store=kv_store, remote_ledger=remote_ledger)

    logger.info(
        f"Progression engine started (environment={config.ENVIRONMENT}, "
        f"migrated={status.migrated}, pending={status.pending})"
    )

    yield

    logger.info("Shutdown initiated...")
    set_progression_service(None)
    await close_remote_ledger()
    await kv_store.close()
    logger.info("Shutdown complete")


app = FastAPI(
    title="AG Sudoku Progression",
    debug=config.DEBUG,
    version="1.2.0",
    lifespan=lifespan,
)

app.include_router(progress_router)
app.include_router(health_router)


def run():
    """Run the server using uvicorn."""
    import uvicorn

    logger.info(f"Starting progression engine on {config.HOST}:{config.PORT}")
    logger.info(f"Debug mode: {config.DEBUG}")

    uvicorn.run(
        "main:app",
        host=config.HOST,
        port=config.PORT,
        reload=config.DEBUG,
        log_level=config.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    run()
