import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api.routes import router
from app.config import ADDRESS, CLEANUP_INTERVAL_SECONDS, CORS_ORIGINS, ENABLE_SWEEPER
from app.core.exceptions import register_exception_handlers
from app.core.metrics import metrics
from app.state import blob_store, coordinator
from app.sweeper import start_sweeper

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("oneshot")


@asynccontextmanager
async def lifespan(app: FastAPI):
    # nothing in a fresh registry can reach blobs left by an earlier process
    purged = blob_store.purge()
    if purged:
        logger.info("event=orphans_purged count=%s", purged)

    scheduler = None
    if ENABLE_SWEEPER:
        scheduler = start_sweeper(coordinator, metrics, logger, CLEANUP_INTERVAL_SECONDS)

    yield

    if scheduler is not None:
        scheduler.shutdown(wait=False)
        logger.info("Expiry sweeper stopped")


app = FastAPI(title="Oneshot Share", version="1.0.0", lifespan=lifespan)

origins = [origin.strip() for origin in CORS_ORIGINS.split(",")]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["Content-Disposition", "Content-Length", "X-Remaining-Downloads"],
)

app.include_router(router)
register_exception_handlers(app)


def _parse_address(value: str) -> tuple[str, int]:
    host, sep, port = value.rpartition(":")
    try:
        if not sep or not host:
            raise ValueError(value)
        return host.strip("[]"), int(port)
    except ValueError:
        logger.warning("invalid ADDRESS value %r, falling back to default", value)
        return "0.0.0.0", 8080


if __name__ == "__main__":
    host, port = _parse_address(ADDRESS)
    logger.info("listening on %s:%s", host, port)
    uvicorn.run(app, host=host, port=port)
