"""
Linked-note collaborator.

A record can be linked to a markdown note.  The panel only needs four
operations on notes, expressed by :class:`NoteGateway`;
:class:`VaultNoteGateway` implements them on a plain directory tree.
"""
from __future__ import annotations

from pathlib import Path
from typing import Optional, Protocol

from summar.constants import logger
from summar.record_store import default_note_name

__all__ = ["NoteGateway", "VaultNoteGateway", "default_note_name",
           "link_note", "pull_note"]


class NoteGateway(Protocol):
    def exists(self, path: str) -> bool: ...

    def read(self, path: str) -> str: ...

    def create(self, path: str, text: str) -> None: ...

    def overwrite(self, path: str, text: str) -> None: ...


class VaultNoteGateway:
    """Notes stored as ``.md`` files under *root*.

    Paths are relative to the root; attempts to escape it raise
    ``ValueError``.  I/O errors propagate.
    """

    def __init__(self, root: Path):
        self.root = Path(root).expanduser()

    def _resolve(self, path: str) -> Path:
        target = (self.root / path).resolve()
        root = self.root.resolve()
        if target != root and root not in target.parents:
            raise ValueError(f"note path escapes vault: {path}")
        return target

    def exists(self, path: str) -> bool:
        try:
            return self._resolve(path).is_file()
        except ValueError:
            return False

    def read(self, path: str) -> str:
        return self._resolve(path).read_text(encoding="utf-8")

    def create(self, path: str, text: str) -> None:
        target = self._resolve(path)
        if target.exists():
            raise FileExistsError(f"note already exists: {path}")
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(text, encoding="utf-8")
        logger.info(f"VaultNoteGateway: created note {path}")

    def overwrite(self, path: str, text: str) -> None:
        target = self._resolve(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(text, encoding="utf-8")
        logger.debug(f"VaultNoteGateway: wrote {len(text)} chars to {path}")


def link_note(store, gateway: NoteGateway, key: str,
              note_path: Optional[str] = None) -> str:
    """Link *key* to a note, creating it from the record's text if absent.

    Returns the note name, or ``""`` when the key is unknown.
    """
    if key not in store:
        return ""
    name = store.enable_note(key, note_path)
    if not gateway.exists(name):
        gateway.create(name, store.get_text(key))
    return name


def pull_note(store, gateway: NoteGateway, key: str) -> bool:
    """Copy the linked note's current text into the record's history."""
    name = store.get_note_name(key)
    if not name or not gateway.exists(name):
        logger.debug(f"Notes: nothing to sync for key={key} (note={name!r})")
        return False
    text = gateway.read(name)
    if text == store.get_text(key):
        return False
    return store.sync_note(key, text)
