"""
Snapshot persistence for output records.

Snapshots live in a dedicated directory:

    conversations/
      summar-conversations-20250131-142501.json
      summar-conversations-20250201-090000.json
      summar-conversations.json          # legacy, unnumbered (import only)

Each file holds every record that has at least one conversation entry::

    {"outputItems": [{"key": ..., "label": ..., "noteName": ...,
                      "conversations": [{"role", "type", "text"}, ...]}]}

Import is a key-based merge: a record whose key is already in the store is
skipped, so importing the same file twice is harmless.  Malformed items
and entries are skipped and logged.  Storage failures on save and cleanup
propagate; the caller decides how to tell the user.
"""
from __future__ import annotations

import asyncio
import json
import uuid
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

import aiofiles
import aiofiles.os

from summar.constants import (
    DEFAULT_SNAPSHOT_DIR, LEGACY_SNAPSHOT_NAME, SNAPSHOT_PREFIX,
    SNAPSHOT_TIMESTAMP_FORMAT, logger,
)
from summar.record_store import RecordStore
from summar.records import OutputRecord

ITEMS_KEY = "outputItems"
LEGACY_ITEMS_KEY = "resultItems"

# Namespace for keys derived from the content of items saved without one
_KEYLESS_NAMESPACE = uuid.UUID("5d1c3a0e-8f2b-4c6e-9a47-1b0f6e2d7c93")


def snapshot_filename(now: Optional[datetime] = None) -> str:
    stamp = (now or datetime.now()).strftime(SNAPSHOT_TIMESTAMP_FORMAT)
    return f"{SNAPSHOT_PREFIX}-{stamp}.json"


def parse_snapshot_timestamp(filename: str) -> Optional[datetime]:
    """Return the timestamp encoded in a snapshot filename, or None."""
    name = Path(filename).name
    prefix = f"{SNAPSHOT_PREFIX}-"
    if not (name.startswith(prefix) and name.endswith(".json")):
        return None
    stamp = name[len(prefix):-len(".json")]
    try:
        return datetime.strptime(stamp, SNAPSHOT_TIMESTAMP_FORMAT)
    except ValueError:
        return None


def serialize_records(records: Iterable[OutputRecord]) -> Dict[str, Any]:
    """Build the snapshot document; records with no history are left out."""
    return {ITEMS_KEY: [r.to_dict() for r in records if r.conversation]}


def content_key(record: OutputRecord) -> str:
    """Stable key for a record that was saved without one.

    Derived from the label and the conversation log, so importing the same
    item again maps onto the record created the first time.
    """
    body = json.dumps([record.label, [e.to_dict() for e in record.conversation]],
                      sort_keys=True, ensure_ascii=False)
    return uuid.uuid5(_KEYLESS_NAMESPACE, body).hex


def parse_snapshot(data: Any) -> Tuple[List[OutputRecord], int]:
    """Turn a decoded snapshot into records.

    Returns ``(records, skipped)`` where *skipped* counts malformed items
    and entries that were dropped.  Accepts the current ``outputItems``
    key or the legacy ``resultItems``; either may be a list or an object
    keyed by position (read in sorted key order).
    """
    if not isinstance(data, dict):
        logger.warning("PersistenceManager: snapshot root is not an object")
        return [], 0
    items = data.get(ITEMS_KEY)
    if items is None:
        items = data.get(LEGACY_ITEMS_KEY)
    if isinstance(items, dict):
        items = [items[k] for k in sorted(items)]
    if not isinstance(items, list):
        logger.warning(f"PersistenceManager: no '{ITEMS_KEY}' or "
                       f"'{LEGACY_ITEMS_KEY}' list in snapshot")
        return [], 0

    records: List[OutputRecord] = []
    skipped = 0
    for item in items:
        if not isinstance(item, dict):
            skipped += 1
            logger.warning(f"PersistenceManager: skipping malformed item {item!r:.80}")
            continue
        bad_entries: List[Any] = []
        try:
            record = OutputRecord.from_dict(item, skipped=bad_entries)
        except Exception as e:
            skipped += 1
            logger.warning(f"PersistenceManager: skipping item that failed to parse: {e}")
            continue
        if bad_entries:
            skipped += len(bad_entries)
            logger.warning(f"PersistenceManager: skipped {len(bad_entries)} malformed "
                           f"entr{'y' if len(bad_entries) == 1 else 'ies'} "
                           f"in key={record.key or '?'}")
        if not record.key:
            record.key = content_key(record)
        records.append(record)
    return records, skipped


class PersistenceManager:
    """Save, import, and prune snapshot files for one :class:`RecordStore`."""

    def __init__(self, store: RecordStore, snapshot_dir: Path = DEFAULT_SNAPSHOT_DIR):
        self._store = store
        self.snapshot_dir = Path(snapshot_dir)
        self._last_imported: Optional[str] = None
        store.attach_persistence(self)

    @property
    def last_imported(self) -> Optional[str]:
        return self._last_imported

    # -- save --

    async def save(self) -> str:
        """Write all non-empty records; return the path or ``""``.

        Overwrites the snapshot imported most recently this session so a
        load/edit/save cycle doesn't fan out into many files.
        """
        payload = serialize_records(self._store.records())
        if not payload[ITEMS_KEY]:
            logger.info("PersistenceManager: nothing to save")
            return ""

        self.snapshot_dir.mkdir(parents=True, exist_ok=True)
        filename = self._last_imported or snapshot_filename()
        target = self.snapshot_dir / filename
        # Written beside the target and swapped in, so a failed write never
        # truncates the snapshot being overwritten.
        tmp = target.with_name(f".{target.name}.tmp")
        try:
            async with aiofiles.open(tmp, 'w', encoding='utf-8') as f:
                await f.write(json.dumps(payload, indent=2, ensure_ascii=False))
            await aiofiles.os.replace(tmp, target)
        finally:
            if tmp.exists():
                tmp.unlink()
        logger.info(f"PersistenceManager: saved {len(payload[ITEMS_KEY])} record(s) "
                    f"to {target}")
        return str(target)

    def save_sync(self) -> str:
        return asyncio.run(self.save())

    # -- import --

    async def import_snapshot(self, filename: Optional[str] = None) -> int:
        """Merge a snapshot into the store; return the number of new records."""
        path = self._resolve_import_path(filename)
        if path is None:
            logger.info("PersistenceManager: no snapshot to import")
            return 0

        try:
            async with aiofiles.open(path, 'r', encoding='utf-8') as f:
                text = await f.read()
            data = json.loads(text or "{}")
        except FileNotFoundError:
            logger.warning(f"PersistenceManager: snapshot not found: {path}")
            return 0
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
            logger.error(f"PersistenceManager: failed to read snapshot {path}: {e}")
            return 0

        records, skipped = parse_snapshot(data)
        created = 0
        for record in records:
            if record.key in self._store:
                logger.debug(f"PersistenceManager: skipping existing key={record.key}")
                continue
            record.folded = True
            if self._store.adopt(record):
                created += 1

        self._last_imported = path.name
        logger.info(f"PersistenceManager: imported {created} new record(s) from "
                    f"{path.name} ({len(records) - created} already present, "
                    f"{skipped} malformed skipped)")
        return created

    def import_sync(self, filename: Optional[str] = None) -> int:
        return asyncio.run(self.import_snapshot(filename))

    # -- listing / cleanup --

    def list_snapshots(self) -> List[str]:
        """Snapshot filenames, newest first by modification time."""
        if not self.snapshot_dir.is_dir():
            return []
        files = [p for p in self.snapshot_dir.glob(f"{SNAPSHOT_PREFIX}*.json")
                 if p.is_file()]
        files.sort(key=lambda p: p.stat().st_mtime, reverse=True)
        return [p.name for p in files]

    def cleanup_old(self, max_age_minutes: int,
                    now: Optional[datetime] = None) -> int:
        """Delete snapshots whose filename timestamp is older than the age.

        Files whose names don't carry a parseable timestamp are kept.
        Deletion errors propagate.
        """
        if not self.snapshot_dir.is_dir():
            return 0
        cutoff = (now or datetime.now()) - timedelta(minutes=max_age_minutes)
        deleted = 0
        for path in sorted(self.snapshot_dir.glob(f"{SNAPSHOT_PREFIX}*.json")):
            stamp = parse_snapshot_timestamp(path.name)
            if stamp is None:
                logger.debug(f"PersistenceManager: keeping {path.name} (no timestamp)")
                continue
            if stamp < cutoff:
                path.unlink()
                deleted += 1
                logger.info(f"PersistenceManager: deleted old snapshot {path.name}")
        return deleted

    # -- private --

    def _resolve_import_path(self, filename: Optional[str]) -> Optional[Path]:
        if filename:
            return self.snapshot_dir / Path(filename).name
        snapshots = self.list_snapshots()
        if snapshots:
            return self.snapshot_dir / snapshots[0]
        legacy = self.snapshot_dir / LEGACY_SNAPSHOT_NAME
        return legacy if legacy.exists() else None
