"""Configuration for SoraBatch."""
import os
from pathlib import Path
from dotenv import load_dotenv

load_dotenv()

# Base paths
BASE_DIR = Path(__file__).resolve().parent.parent
LOGS_DIR = Path(os.getenv("LOGS_DIR", str(BASE_DIR / "logs")))
LOGS_DIR.mkdir(parents=True, exist_ok=True)

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
BETTERSTACK_SOURCE_TOKEN = os.getenv("BETTERSTACK_SOURCE_TOKEN")
BETTERSTACK_INGEST_HOST = os.getenv("BETTERSTACK_INGEST_HOST")
LOG_BUFFER_SIZE = int(os.getenv("LOG_BUFFER_SIZE", "100"))  # entries kept by the operational log

# Remote host
CDN_BASE_URL = os.getenv("CDN_BASE_URL", "https://oscdn2.dyysy.com/MP4")

# Input / output
INPUT_FILE = os.getenv("INPUT_FILE", "sora_movies.txt")
DOWNLOAD_DIR = os.getenv("DOWNLOAD_DIR", "downloads")

# Scheduler settings
CONCURRENCY_CHOICES = (1, 2, 3, 4, 5, 8, 16)
CONCURRENCY_LIMIT = int(os.getenv("CONCURRENCY_LIMIT", "3"))
POLL_INTERVAL = float(os.getenv("POLL_INTERVAL", "0.5"))  # seconds between idle re-evaluations

# Download settings
REQUEST_TIMEOUT = int(os.getenv("REQUEST_TIMEOUT", "60"))
CHUNK_SIZE = int(os.getenv("CHUNK_SIZE", str(512 * 1024)))
MAX_RETRIES = int(os.getenv("MAX_RETRIES", "0"))  # automatic retries per attempt, 0 = operator only
RETRY_BACKOFF_SECONDS = float(os.getenv("RETRY_BACKOFF_SECONDS", "2"))

# Enrichment (optional)
GEMINI_API_KEY = os.getenv("GEMINI_API_KEY") or os.getenv("API_KEY")
GEMINI_MODEL = os.getenv("GEMINI_MODEL", "gemini-3-flash-preview")
AUTO_TAG = os.getenv("AUTO_TAG", "false").lower() in ("1", "true", "yes")


def validate_config():
    """Validate required configuration."""
    errors = []

    if not CDN_BASE_URL.startswith(("http://", "https://")):
        errors.append(f"CDN_BASE_URL must be an http(s) URL: {CDN_BASE_URL}")

    if CONCURRENCY_LIMIT not in CONCURRENCY_CHOICES:
        errors.append(
            f"CONCURRENCY_LIMIT must be one of {list(CONCURRENCY_CHOICES)}: {CONCURRENCY_LIMIT}"
        )

    if REQUEST_TIMEOUT <= 0:
        errors.append(f"REQUEST_TIMEOUT must be positive: {REQUEST_TIMEOUT}")

    if MAX_RETRIES < 0:
        errors.append(f"MAX_RETRIES cannot be negative: {MAX_RETRIES}")

    if LOG_BUFFER_SIZE <= 0:
        errors.append(f"LOG_BUFFER_SIZE must be positive: {LOG_BUFFER_SIZE}")

    if errors:
        raise ValueError("Config errors:\n  " + "\n  ".join(errors))
