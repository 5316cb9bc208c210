"""
Panel configuration: load and persist ``config.json`` in App Support.

Only the keys the output panel needs are interpreted here; unknown keys are
preserved untouched when the file is written back.
"""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from summar.constants import (
    CONFIG_PATH, DEFAULT_NOTES_DIR, DEFAULT_SNAPSHOT_DIR, logger,
)


DEFAULT_CONFIG: Dict[str, Any] = {
    "logging": {
        "level": "INFO",
        "log_to_file": True,
        "log_file_name": "summar_panel.log",
    },
    "panel": {
        "snapshot_directory": "",
        "auto_cleanup_minutes": 0,
        "conversation_model": "gemini-2.5-flash",
        "cli_binary": "summar-cli",
        "cli_extra_args": [],
        "stream_format": "raw",
        "notes_directory": "",
    },
}

# How the CLI's stdout is read: plain text lines, or one JSON object per line
STREAM_FORMATS = ("raw", "json")


@dataclass
class PanelSettings:
    """Typed view over the ``panel`` section of the config."""
    snapshot_directory: Path = DEFAULT_SNAPSHOT_DIR
    auto_cleanup_minutes: int = 0
    conversation_model: str = "gemini-2.5-flash"
    cli_binary: str = "summar-cli"
    cli_extra_args: List[str] = field(default_factory=list)
    stream_format: str = "raw"
    notes_directory: Path = DEFAULT_NOTES_DIR

    @classmethod
    def from_config(cls, config: Optional[Dict[str, Any]]) -> "PanelSettings":
        panel = (config or {}).get("panel", {}) or {}
        snapshot_dir = str(panel.get("snapshot_directory", "") or "").strip()
        try:
            cleanup = int(panel.get("auto_cleanup_minutes", 0) or 0)
        except (TypeError, ValueError):
            logger.warning(f"Config: invalid auto_cleanup_minutes "
                           f"{panel.get('auto_cleanup_minutes')!r}, using 0")
            cleanup = 0
        extra = panel.get("cli_extra_args", [])
        notes_dir = str(panel.get("notes_directory", "") or "").strip()
        stream_format = str(panel.get("stream_format", "raw") or "raw").strip().lower()
        if stream_format not in STREAM_FORMATS:
            logger.warning(f"Config: unknown stream_format {stream_format!r}, using 'raw'")
            stream_format = "raw"
        return cls(
            snapshot_directory=(Path(snapshot_dir).expanduser()
                                if snapshot_dir else DEFAULT_SNAPSHOT_DIR),
            auto_cleanup_minutes=max(0, cleanup),
            conversation_model=panel.get("conversation_model",
                                         cls.conversation_model),
            cli_binary=panel.get("cli_binary", cls.cli_binary),
            cli_extra_args=[str(a) for a in extra] if isinstance(extra, list) else [],
            stream_format=stream_format,
            notes_directory=(Path(notes_dir).expanduser()
                             if notes_dir else DEFAULT_NOTES_DIR),
        )

    def to_dict(self) -> Dict[str, Any]:
        snapshot_dir = ("" if self.snapshot_directory == DEFAULT_SNAPSHOT_DIR
                        else str(self.snapshot_directory))
        return {
            "snapshot_directory": snapshot_dir,
            "auto_cleanup_minutes": self.auto_cleanup_minutes,
            "conversation_model": self.conversation_model,
            "cli_binary": self.cli_binary,
            "cli_extra_args": list(self.cli_extra_args),
            "stream_format": self.stream_format,
            "notes_directory": ("" if self.notes_directory == DEFAULT_NOTES_DIR
                                else str(self.notes_directory)),
        }


def _merged_defaults(data: Dict[str, Any]) -> Dict[str, Any]:
    merged = json.loads(json.dumps(DEFAULT_CONFIG))
    for section, values in data.items():
        if isinstance(values, dict) and isinstance(merged.get(section), dict):
            merged[section].update(values)
        else:
            merged[section] = values
    return merged


def load_config(path: Path = CONFIG_PATH) -> Dict[str, Any]:
    """Load the config file, falling back to defaults.

    A missing file is normal on first launch.  An unreadable or invalid file
    is logged and the defaults are used so the panel can still start.
    """
    if not path.exists():
        logger.info(f"Config: {path} not found, using defaults")
        return _merged_defaults({})
    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        logger.error(f"Config: invalid configuration file {path}: {e}")
        return _merged_defaults({})
    except OSError as e:
        logger.error(f"Config: failed to read {path}: {e}")
        return _merged_defaults({})
    if not isinstance(data, dict):
        logger.error(f"Config: expected a JSON object in {path}")
        return _merged_defaults({})
    return _merged_defaults(data)


def save_config(config: Dict[str, Any], path: Path = CONFIG_PATH) -> None:
    """Write *config* back to disk.  I/O errors propagate to the caller."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, 'w', encoding='utf-8') as f:
        json.dump(config, f, indent=2)
    logger.info(f"Config: saved to {path}")
