"""
SongCard - Configuration
All settings loaded from environment variables with sensible defaults.

The service is stateless: caches live in memory for the lifetime of the
process and nothing is written to disk.  Static assets (fonts, overlay
templates, theme backgrounds) are read from ``ASSETS_DIR``.
"""

import os
from pathlib import Path

from dotenv import load_dotenv

# Load environment variables from .env file
_ = load_dotenv()

# ---------------------------------------------------------------------------
# Application
# ---------------------------------------------------------------------------
APP_HOST = os.getenv("APP_HOST", "0.0.0.0")
APP_PORT = int(os.getenv("APP_PORT", "8000"))
APP_ENV = os.getenv("APP_ENV", "development")
APP_VERSION = os.getenv("APP_VERSION", "1.0.0")
DEBUG = os.getenv("DEBUG", "true").lower() == "true"

# ---------------------------------------------------------------------------
# Paths
# ---------------------------------------------------------------------------
BASE_DIR = Path(__file__).resolve().parent
PROJECT_ROOT = BASE_DIR.parent

# Local image references such as "/templates/phone.png" resolve under here
ASSETS_DIR = Path(os.getenv("ASSETS_DIR", str(PROJECT_ROOT / "assets")))

# Optional explicit font files; system fonts are probed when unset
FONT_PATH = os.getenv("FONT_PATH", "")
FONT_BOLD_PATH = os.getenv("FONT_BOLD_PATH", "")

# Device frame drawn over the phone card, e.g. "/templates/phone.png" for
# ASSETS_DIR/templates/phone.png.  Unset (the default) draws no frame.
PHONE_TEMPLATE = os.getenv("PHONE_TEMPLATE", "")

# ---------------------------------------------------------------------------
# Logging: stdout only
# ---------------------------------------------------------------------------
LOG_LEVEL = os.getenv("LOG_LEVEL", "DEBUG")

# ---------------------------------------------------------------------------
# Upstream fetching
# ---------------------------------------------------------------------------
BROWSER_USER_AGENT = os.getenv(
    "BROWSER_USER_AGENT",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
)

# When set, remote artwork is fetched through "{base}/image-proxy?url=...".
# Empty means artwork is fetched directly from its origin.
IMAGE_PROXY_BASE_URL = os.getenv("IMAGE_PROXY_BASE_URL", "")

# Hard ceiling for a single image load (seconds), independent of retries
IMAGE_LOAD_TIMEOUT = float(os.getenv("IMAGE_LOAD_TIMEOUT", "10"))

# Timeout used by the image proxy when talking to the origin (seconds)
PROXY_TIMEOUT = float(os.getenv("PROXY_TIMEOUT", "5"))

# Long-lived cache header sent with proxied images
PROXY_CACHE_CONTROL = "public, max-age=31536000, immutable"

# ---------------------------------------------------------------------------
# Metadata
# ---------------------------------------------------------------------------
NETEASE_API_URL = os.getenv("NETEASE_API_URL", "http://music.163.com/api")
NETEASE_REFERER = os.getenv("NETEASE_REFERER", "http://music.163.com")

# Per-request timeout for each metadata call (seconds)
UPSTREAM_REQUEST_TIMEOUT = float(os.getenv("UPSTREAM_REQUEST_TIMEOUT", "5"))
# Shared deadline for the parallel detail + lyric fetch (seconds)
METADATA_DEADLINE = float(os.getenv("METADATA_DEADLINE", "8"))
# Metadata cache lifetime in seconds (24 hours)
METADATA_CACHE_TTL = int(os.getenv("METADATA_CACHE_TTL", str(60 * 60 * 24)))
# Cache-Control sent with metadata responses
METADATA_CACHE_CONTROL = "public, max-age=3600"

SUPPORTED_PLATFORMS = {"netease"}

# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------
# Default "played so far" position as a fraction of the track duration
PLAY_DURATION_FRACTION = float(os.getenv("PLAY_DURATION_FRACTION", str(1 / 3)))

# Backdrop used when no palette could be extracted
DEFAULT_BACKDROP = (20, 20, 20)
