import os
from dotenv import load_dotenv

load_dotenv()

_UNIT_SECONDS = {
    "seconds": 1,
    "secs": 1,
    "s": 1,
    "minutes": 60,
    "mins": 60,
    "m": 60,
}


def to_seconds(value: float, unit: str) -> float:
    try:
        return float(value) * _UNIT_SECONDS[unit.strip().lower()]
    except KeyError:
        raise ValueError(f"Unsupported TIME_UNIT {unit!r}; use 'seconds' or 'minutes'") from None


STORAGE_DIR = os.getenv(
    "STORAGE_DIR", os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "data"))
)
CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")
UPLOAD_SECRET = os.getenv("UPLOAD_SECRET") or None
ADDRESS = os.getenv("ADDRESS", "0.0.0.0:8080")

# TTL and sweep interval share one explicit unit
TIME_UNIT = os.getenv("TIME_UNIT", "seconds").strip().lower()
LINK_TTL = float(os.getenv("LINK_TTL", "3600"))
CLEANUP_INTERVAL = float(os.getenv("CLEANUP_INTERVAL", "60"))
LINK_TTL_SECONDS = to_seconds(LINK_TTL, TIME_UNIT)
CLEANUP_INTERVAL_SECONDS = max(1.0, to_seconds(CLEANUP_INTERVAL, TIME_UNIT))

MAX_DOWNLOADS = max(1, int(os.getenv("MAX_DOWNLOADS", "3")))
MAX_FILE_SIZE = int(os.getenv("MAX_FILE_SIZE_BYTES", str(100 * 1024 * 1024)))
DOWNLOAD_CHUNK_SIZE = max(1024, int(os.getenv("DOWNLOAD_CHUNK_SIZE", str(64 * 1024))))
ENABLE_SWEEPER = os.getenv("ENABLE_SWEEPER", "true").lower() in {"true", "1", "yes"}
