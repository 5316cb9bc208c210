"""
Application constants, directory layout, and logging setup.
"""
import logging
import logging.handlers
import os
from pathlib import Path
from typing import Dict, Optional

from version import __version__

# --- Configuration Constants ---
APP_NAME = "Summar Panel"
APP_VERSION = __version__
APP_SUPPORT_DIR = Path(
    os.environ.get("SUMMAR_HOME", Path.home() / ".summar")
).expanduser()
CONFIG_PATH = APP_SUPPORT_DIR / "config.json"
LOG_DIR = APP_SUPPORT_DIR / ".logs"
DEFAULT_SNAPSHOT_DIR = APP_SUPPORT_DIR / "conversations"
DEFAULT_NOTES_DIR = APP_SUPPORT_DIR / "notes"

# --- Snapshot naming ---
SNAPSHOT_PREFIX = "summar-conversations"
SNAPSHOT_TIMESTAMP_FORMAT = "%Y%m%d-%H%M%S"
LEGACY_SNAPSHOT_NAME = f"{SNAPSHOT_PREFIX}.json"

# --- Timing (milliseconds) ---
RENDER_DEBOUNCE_MS = 60
SCROLL_THROTTLE_MS = 100

# --- Logging Setup ---
LOG_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
    "NONE": None,  # Disables logging entirely
}

# Create logger
logger = logging.getLogger("Summar")

# Track current log file path (set by setup_logging)
current_log_file_path: Optional[Path] = None

def setup_logging(config: Optional[Dict] = None):
    """Configure logging based on config file settings."""
    global current_log_file_path

    log_cfg = config.get("logging", {}) if config else {}
    log_level_str = log_cfg.get("level", "INFO").upper()
    log_level = LOG_LEVELS.get(log_level_str, logging.INFO)
    log_to_file = log_cfg.get("log_to_file", True)
    log_file_name = log_cfg.get("log_file_name", "summar_panel.log")

    # Clear existing handlers
    logger.handlers.clear()

    # If logging is disabled (NONE), set to highest level and skip handlers
    if log_level is None:
        logger.setLevel(logging.CRITICAL + 10)
        current_log_file_path = None
        return

    formatter = logging.Formatter('%(asctime)s [%(levelname)s] %(name)s: %(message)s')

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    # File handler (rotating: 2 MB max, keep 3 backups)
    if log_to_file:
        try:
            LOG_DIR.mkdir(parents=True, exist_ok=True)
            current_log_file_path = LOG_DIR / log_file_name
            file_handler = logging.handlers.RotatingFileHandler(
                current_log_file_path,
                maxBytes=2 * 1024 * 1024,  # 2 MB
                backupCount=3,
                encoding='utf-8'
            )
            file_handler.setFormatter(formatter)
            logger.addHandler(file_handler)
        except OSError as e:
            print(f"Failed to create log file: {e}")
            current_log_file_path = None
    else:
        current_log_file_path = None

    logger.setLevel(log_level)

# Initial basic setup (will be reconfigured after config is loaded)
logging.basicConfig(level=logging.INFO, format='%(asctime)s [%(levelname)s] %(name)s: %(message)s')
logger.setLevel(logging.INFO)
