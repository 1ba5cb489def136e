from app.config import LINK_TTL_SECONDS, MAX_DOWNLOADS, MAX_FILE_SIZE, STORAGE_DIR
from app.coordinator import AccessCoordinator
from app.core.metrics import metrics
from app.registry import LinkRegistry
from app.storage import BlobStore

registry = LinkRegistry()
blob_store = BlobStore(STORAGE_DIR)
coordinator = AccessCoordinator(
    registry,
    blob_store,
    max_downloads=MAX_DOWNLOADS,
    ttl_seconds=LINK_TTL_SECONDS,
    max_upload_bytes=MAX_FILE_SIZE,
    metrics=metrics,
)


def get_coordinator() -> AccessCoordinator:
    return coordinator
