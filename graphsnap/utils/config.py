"""Configuration management for GraphSnap."""

import os
from pathlib import Path
from typing import List


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_seconds_from_ms(name: str, default_ms: int) -> float:
    """Read a millisecond value from the environment and return seconds."""
    try:
        return int(os.getenv(name, default_ms)) / 1000.0
    except ValueError:
        return default_ms / 1000.0


# Project root directory
PROJECT_ROOT = Path(__file__).parent.parent.parent

# Graph API
GRAPH_API_HOST = os.getenv("GRAPH_API_HOST", "https://graph.facebook.com/v21.0")
ACCESS_TOKEN = os.getenv("FB_ACCESS_TOKEN", "")
PLATFORM_FACEBOOK = "facebook"

# Database configuration
DATABASE_ENABLED = _env_bool("DATABASE_ENABLED", True)
DB_PATH = Path(os.getenv("DATABASE_PATH", str(PROJECT_ROOT / "graphsnap.db")))
DB_URL = f"sqlite:///{DB_PATH}"

# Download configuration
DOWNLOAD_DIR = Path(os.getenv("DOWNLOADS_FOLDER", str(PROJECT_ROOT / "downloads")))
LINKS_DIR = Path(os.getenv("LINKS_FOLDER", str(PROJECT_ROOT / "links")))
LINK_SEPARATOR = ";"
PHOTO_FILE_FORMAT = os.getenv("PHOTO_FILE_FORMAT", "png")
VIDEO_FILE_FORMAT = os.getenv("VIDEO_FILE_FORMAT", "mp4")

# Logs configuration
LOG_DIR = PROJECT_ROOT / "logs"
LOG_FILE = LOG_DIR / "graphsnap.log"

# Pacing (seconds)
WAIT_BEFORE_NEXT_FETCH = _env_seconds_from_ms("WAIT_BEFORE_NEXT_FETCH", 500)
WAIT_BEFORE_NEXT_FETCH_LARGEST_PHOTO = _env_seconds_from_ms(
    "WAIT_BEFORE_NEXT_FETCH_LARGEST_PHOTO", 500
)
DELAY_BETWEEN_TARGETS = 1.0

# Retry configuration
MAX_RETRIES = int(os.getenv("MAX_RETRIES", 17))
RATE_LIMIT_WAIT = 60.0  # Seconds, when no retry hint is available
NETWORK_RETRY_WAIT = 2.0  # Seconds, after rotating proxy

# HTTP configuration
CONNECT_TIMEOUT = 30.0  # Seconds
READ_TIMEOUT = 120.0  # Seconds
DOWNLOAD_TIMEOUT = 60.0  # Seconds
DOWNLOAD_CHUNK_SIZE = 8192  # Bytes
MAX_REDIRECTS = 10

# Proxy configuration
PROXY_ENABLED = _env_bool("PROXY_ENABLED", False)
PROXY_URL = os.getenv("PROXY_URL", "").strip()
PROXY_LIST_FILE = os.getenv("PROXY_LIST_FILE", "").strip()
PROXY_CHECK_URL = "https://api.ipify.org?format=json"
PROXY_CHECK_TIMEOUT = 10.0  # Seconds
PROXY_CHECK_BATCH_SIZE = 10

# User agent pool for rotation
USER_AGENTS: List[str] = [
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.1 Safari/605.1.15",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
]

# App information
APP_NAME = "GraphSnap"
APP_VERSION = "0.1.0"


def get_save_folder(owner_id: str, kind: str, base_dir: Path = None) -> Path:
    """
    Get the folder where an owner's media of one kind is stored.

    Args:
        owner_id: Vendor id of the media owner
        kind: 'photos' or 'videos'
        base_dir: Override for DOWNLOAD_DIR

    Returns:
        Path like downloads/<owner_id>/<kind>
    """
    return (base_dir or DOWNLOAD_DIR) / str(owner_id) / kind
