"""
RecordStore, the keyed table of output records and the single source of truth
for their content, fold state, and note linkage.

All mutations happen on the GUI thread.  Producers running in worker
threads reach the store through queued Qt signals (see ``summar.workers``),
so each call below runs to completion before the next one starts and the
per-key fragment order is exactly the order the calls arrive in.

The view layer listens to the store's signals instead of being called
directly, which keeps the store usable (and testable) without widgets.
"""
from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Dict, List, Optional, Set, Tuple

from PyQt6.QtCore import QObject, pyqtSignal

from summar.constants import logger
from summar.records import Entry, EntryKind, OutputRecord, Role
from summar.render_scheduler import QtTimerFactory, RenderScheduler, TimerFactory

if TYPE_CHECKING:
    from summar.persistence import PersistenceManager


def default_note_name(now: Optional[datetime] = None) -> str:
    """``YYMMDD-HHMM`` name used when a note is linked without a path."""
    return (now or datetime.now()).strftime("%y%m%d-%H%M")


class RecordStore(QObject):
    """Keyed table of :class:`OutputRecord` objects.

    Signals
    -------
    record_created(key)
        A record was inserted; the view should build its widget.
    record_removed(key)
        A record was deleted; the view should tear its widget down.
    header_changed(key)
        Label or note linkage changed; the header needs a refresh.
    fold_changed(key)
        The record was folded or unfolded.
    rendered(key, markup)
        A debounced render pass produced new body markup.
    """

    record_created = pyqtSignal(str)
    record_removed = pyqtSignal(str)
    header_changed = pyqtSignal(str)
    fold_changed = pyqtSignal(str)
    rendered = pyqtSignal(str, str)

    def __init__(self, render_fn=None, timer_factory: Optional[TimerFactory] = None,
                 parent: Optional[QObject] = None):
        super().__init__(parent)
        if render_fn is None:
            from summar.markdown import md_to_html as render_fn
        self._records: Dict[str, OutputRecord] = {}
        # Keys deleted this session; one short string per deleted record, kept
        # until the key is created or imported again.
        self._tombstones: Set[str] = set()
        self._persistence: Optional["PersistenceManager"] = None
        self._in_clear = False
        self.scheduler = RenderScheduler(
            text_for=self.get_text,
            render_fn=render_fn,
            apply_fn=self.rendered.emit,
            timer_factory=timer_factory or QtTimerFactory(self),
        )

    def attach_persistence(self, persistence: "PersistenceManager") -> None:
        self._persistence = persistence

    # -- creation / deletion --

    def create_record(self, key: str, label: str) -> OutputRecord:
        """Insert a record for *key* unless one exists; return the record."""
        existing = self._records.get(key)
        if existing is not None:
            return existing
        self._tombstones.discard(key)
        record = OutputRecord(key=key, label=label)
        self._records[key] = record
        logger.debug(f"RecordStore: created record key={key} label={label!r}")
        self.record_created.emit(key)
        return record

    def delete_record(self, key: str) -> bool:
        """Remove *key* and any pending render for it.  No-op if absent."""
        if self._in_clear:
            return False
        record = self._records.get(key)
        if record is None:
            logger.debug(f"RecordStore: delete of unknown key={key} ignored")
            return False
        self.scheduler.cancel(key)
        del self._records[key]
        self._tombstones.add(key)
        logger.info(f"RecordStore: deleted record key={key}")
        self.record_removed.emit(key)
        return True

    def clear_all(self) -> str:
        """Persist every non-empty record, then remove them all.

        Returns the snapshot path, or ``""`` when nothing was saved.
        Storage errors propagate and leave the records in place.
        """
        saved_path = ""
        if self._persistence is not None:
            saved_path = self._persistence.save_sync()
        keys = list(self._records)
        self.scheduler.cancel_all()
        self._in_clear = True
        try:
            for key in keys:
                self._records.pop(key, None)
                self._tombstones.add(key)
                self.record_removed.emit(key)
        finally:
            self._in_clear = False
        logger.info(f"RecordStore: cleared {len(keys)} record(s)")
        return saved_path

    # -- streaming task output --

    def append_text(self, key: str, label: str, fragment: str) -> str:
        """Concatenate *fragment* onto the record's in-progress text."""
        record = self._writable(key, label)
        if record is None:
            return key
        record.cached_result += fragment
        self.scheduler.schedule(key)
        return key

    def replace_text(self, key: str, label: str, text: str, is_final: bool) -> str:
        """Replace the shown text; a final call seals it into the log."""
        record = self._writable(key, label)
        if record is None:
            return key
        if is_final:
            record.conversation.append(Entry.output(text))
        record.cached_result = text
        self.scheduler.schedule(key)
        return key

    # -- dialogue --

    def add_conversation_turn(self, key: str, role: Role,
                              text: str) -> Tuple[List[Entry], int]:
        """Append a dialogue turn and return ``(entries, added_index)``.

        The index lets a producer rewrite the turn in place later, e.g. to
        swap a "thinking..." placeholder for the real answer.
        """
        record = self._writable(key, "")
        if record is None:
            return [], -1
        record.conversation.append(Entry.conversation(role, text))
        record.refresh_cached_result()
        self.scheduler.schedule(key)
        return list(record.conversation), record.last_index()

    def update_conversation_turn(self, key: str, index: int, text: str) -> bool:
        """Rewrite the dialogue turn at *index*.  False if it can't be found.

        Any ``conversation`` entry may be addressed, not only the last one:
        a reply placeholder can still be streaming when the user appends
        another turn after it.  Drivers only ever rewrite the turn they
        appended themselves; ``output`` and ``notesync`` entries are never
        rewritten.
        """
        record = self._records.get(key)
        if record is None:
            return False
        if index < 0 or index >= len(record.conversation):
            logger.debug(f"RecordStore: turn index {index} out of range for key={key}")
            return False
        entry = record.conversation[index]
        if entry.kind != EntryKind.CONVERSATION:
            logger.debug(f"RecordStore: entry {index} of key={key} is {entry.kind.value}, "
                         f"not a conversation turn")
            return False
        entry.text = text
        record.refresh_cached_result()
        self.scheduler.schedule(key)
        return True

    # -- notes --

    def enable_note(self, key: str, note_path: Optional[str] = None) -> str:
        """Link *key* to a note; returns the note name, ``""`` if unknown key."""
        record = self._records.get(key)
        if record is None:
            return ""
        name = note_path or default_note_name()
        if not name.endswith(".md"):
            name += ".md"
        record.note_name = name
        self.header_changed.emit(key)
        return name

    def sync_note(self, key: str, text: str) -> bool:
        """Record that the linked note's content is now *text*."""
        record = self._records.get(key)
        if record is None:
            return False
        record.conversation.append(Entry.notesync(text))
        record.refresh_cached_result()
        self.scheduler.schedule(key)
        return True

    # -- fold state --

    def set_folded(self, key: Optional[str], folded: bool) -> None:
        """Fold one record, or every record when *key* is empty."""
        targets = list(self._records) if not key else [key]
        for k in targets:
            record = self._records.get(k)
            if record is None or record.folded == folded:
                continue
            record.folded = folded
            self.fold_changed.emit(k)

    def toggle_fold(self, key: str) -> bool:
        record = self._records.get(key)
        if record is None:
            return False
        self.set_folded(key, not record.folded)
        return record.folded

    def set_stat_id(self, key: str, stat_id: str) -> None:
        record = self._records.get(key)
        if record is not None:
            record.stat_id = stat_id

    # -- import support --

    def adopt(self, record: OutputRecord) -> bool:
        """Insert an already-built record (used by import).  Never overwrites."""
        if record.key in self._records:
            return False
        self._tombstones.discard(record.key)
        self._records[record.key] = record
        self.record_created.emit(record.key)
        self.scheduler.schedule(record.key)
        return True

    # -- read accessors --

    def get(self, key: str) -> Optional[OutputRecord]:
        return self._records.get(key)

    def get_text(self, key: str) -> str:
        if key == "":
            return "\n\n".join(r.cached_result for r in self._records.values()
                               if r.cached_result)
        record = self._records.get(key)
        return record.cached_result if record else ""

    def get_label(self, key: str) -> str:
        record = self._records.get(key)
        return record.label if record else ""

    def get_note_name(self, key: str) -> str:
        record = self._records.get(key)
        return record.note_name if record else ""

    def get_conversation(self, key: str) -> List[Entry]:
        record = self._records.get(key)
        return list(record.conversation) if record else []

    def is_folded(self, key: str) -> bool:
        record = self._records.get(key)
        return record.folded if record else False

    def keys(self) -> List[str]:
        return list(self._records)

    def records(self) -> List[OutputRecord]:
        return list(self._records.values())

    def __contains__(self, key: object) -> bool:
        return key in self._records

    def __len__(self) -> int:
        return len(self._records)

    # -- private --

    def _writable(self, key: str, label: str) -> Optional[OutputRecord]:
        """Return the record for a producer write, creating it if needed.

        Writes for a key deleted earlier in this session are late answers
        from a task nobody is waiting for anymore; they are dropped.
        """
        if key in self._tombstones:
            logger.debug(f"RecordStore: dropping late write for deleted key={key}")
            return None
        record = self._records.get(key)
        if record is None:
            return self.create_record(key, label or "chat")
        if label and record.label != label:
            record.label = label
            self.header_changed.emit(key)
        return record
