"""Centralized constants for slimage.

This module contains all hardcoded constants used throughout the codebase.
Grouping them here makes it easier to:
- Find and modify default values
- Understand system limits at a glance
- Keep timeouts consistent between probe, converter and gateway
"""

from __future__ import annotations

# =============================================================================
# Scanning
# =============================================================================

DEFAULT_WINDOW_SIZE = 30  # Records classified per scan call
DEFAULT_HEAVY_THRESHOLD_BYTES = 500 * 1024  # 500 KiB
DEFAULT_PROBE_TIMEOUT = 2.0  # seconds, HEAD request (must stay below convert timeouts)
DEFAULT_SCAN_YIELD_DELAY = 0.005  # seconds between probed records

# =============================================================================
# Conversion
# =============================================================================

DEFAULT_QUALITY = 0.8  # Re-encode quality (0..1)
DEFAULT_TARGET_FORMAT = "webp"
DEFAULT_DIRECT_FETCH_TIMEOUT = 30.0  # seconds
DEFAULT_ELEMENT_LOAD_TIMEOUT = 10.0  # seconds, browser element-load bound
DEFAULT_BACKGROUND_COLOR = (255, 255, 255)

# Content types for supported target formats
TARGET_CONTENT_TYPES = {
    "webp": "image/webp",
    "jpeg": "image/jpeg",
    "png": "image/png",
}

# =============================================================================
# Gateway
# =============================================================================

DEFAULT_GATEWAY_TIMEOUT = 20.0  # seconds
GATEWAY_ACTION = "optimize"
OPTIMIZED_MARKER_PARAM = "opt"  # Query parameter appended after optimization
CACHE_BUST_PARAM = "t"  # Query parameter used to bypass intermediate caches
CONNECTION_TEST_IMAGE_URL = (
    "https://images.unsplash.com/photo-1546069901-ba9599a7e63c?q=80&w=200"
)
CONNECTION_TEST_PATH = "test/connection-check"

# =============================================================================
# Batch Run
# =============================================================================

DEFAULT_ITEM_TIMEOUT = 45.0  # seconds per candidate
DEFAULT_PACING_DELAY = 0.2  # seconds between candidates
DEFAULT_SKIP_PATTERNS = ["placeholder"]
TIMEOUT_MESSAGE = "Timeout"

# =============================================================================
# Storage
# =============================================================================

DEFAULT_RECORD_NAMESPACE = "recipes"
DEFAULT_RECORDS_FILE = "./records.json"
DEFAULT_ASSETS_DIR = "./assets"
DEFAULT_PUBLIC_BASE_URL = "http://localhost:8000/assets/"
DEFAULT_SUPABASE_TABLE = "recipes"
DEFAULT_SUPABASE_BUCKET = "images"
DEFAULT_SUPABASE_SETTINGS_TABLE = "site_settings"
DEFAULT_STORE_TIMEOUT = 30.0  # seconds, per upload/persist/delete call

# =============================================================================
# State
# =============================================================================

STATE_VERSION = "1.0"
MAX_STATE_FILE_SIZE = 10 * 1024 * 1024  # 10 MB
DEFAULT_STATE_DIR = "~/.slimage/states"

# =============================================================================
# Logging
# =============================================================================

DEFAULT_LOG_LEVEL = "DEBUG"
DEFAULT_LOG_ROTATION = "10 MB"
DEFAULT_LOG_RETENTION = "7 days"

# =============================================================================
# UI / Display
# =============================================================================

DEFAULT_JSON_INDENT = 2
DEFAULT_TITLE_PREVIEW_CHARS = 30

# =============================================================================
# Paths and Filenames
# =============================================================================

CONFIG_FILENAME = "slimage.json"
USER_AGENT = "Mozilla/5.0 (compatible; slimage/0.3.0)"
