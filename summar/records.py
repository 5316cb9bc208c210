"""
Output records: the unit of state for one summarization task or chat.

Each record owns an ordered conversation log.  ``output`` entries are the
authoritative, durable results of a task; ``conversation`` entries are
dialogue turns; ``notesync`` entries mirror a linked note.  The text a
record currently shows is always recomputed from the log by
:func:`derive_cached_result`, except while a task is still streaming, when
the store sets it directly without growing the log.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


class EntryKind(str, Enum):
    OUTPUT = "output"
    CONVERSATION = "conversation"
    NOTESYNC = "notesync"


_RESULT_KINDS = (EntryKind.OUTPUT, EntryKind.NOTESYNC)


@dataclass
class Entry:
    """Serialisable representation of a single conversation entry."""
    role: Role
    kind: EntryKind
    text: str

    @classmethod
    def output(cls, text: str, role: Role = Role.ASSISTANT) -> "Entry":
        return cls(role=role, kind=EntryKind.OUTPUT, text=text)

    @classmethod
    def conversation(cls, role: Role, text: str) -> "Entry":
        return cls(role=Role(role), kind=EntryKind.CONVERSATION, text=text)

    @classmethod
    def notesync(cls, text: str) -> "Entry":
        return cls(role=Role.ASSISTANT, kind=EntryKind.NOTESYNC, text=text)

    def to_dict(self) -> Dict[str, Any]:
        return {"role": self.role.value, "type": self.kind.value, "text": self.text}

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Entry":
        """Build an entry from its snapshot form.

        Raises ``ValueError`` for an unknown role or type and ``TypeError``
        for non-string text so the importer can skip just this entry.
        """
        if not isinstance(d, dict):
            raise TypeError(f"entry must be an object, got {type(d).__name__}")
        text = d.get("text", "")
        if not isinstance(text, str):
            raise TypeError(f"entry text must be a string, got {type(text).__name__}")
        return cls(
            role=Role(d.get("role", Role.ASSISTANT.value)),
            kind=EntryKind(d.get("type", EntryKind.OUTPUT.value)),
            text=text,
        )


def derive_cached_result(conversation: List[Entry]) -> str:
    """Return the text a record should show for *conversation*.

    The newest entry wins when it is a dialogue turn (the record is in the
    middle of a chat); otherwise the newest ``output``/``notesync`` result
    is shown.  An empty log shows nothing.
    """
    if not conversation:
        return ""
    last = conversation[-1]
    if last.kind == EntryKind.CONVERSATION:
        return last.text
    for entry in reversed(conversation):
        if entry.kind in _RESULT_KINDS:
            return entry.text
    return ""


@dataclass
class OutputRecord:
    key: str
    label: str = ""
    conversation: List[Entry] = field(default_factory=list)
    cached_result: str = ""
    note_name: str = ""
    folded: bool = False
    stat_id: str = ""

    def refresh_cached_result(self) -> str:
        self.cached_result = derive_cached_result(self.conversation)
        return self.cached_result

    def last_index(self) -> int:
        return len(self.conversation) - 1

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "key": self.key,
            "label": self.label,
            "noteName": self.note_name,
            "conversations": [e.to_dict() for e in self.conversation],
        }
        if self.stat_id:
            d["statId"] = self.stat_id
        return d

    @classmethod
    def from_dict(cls, d: Dict[str, Any],
                  skipped: Optional[List[Any]] = None) -> "OutputRecord":
        """Rebuild a record from a snapshot item.

        Malformed conversation entries are dropped and appended to
        *skipped* (when given) so the caller can report them.  A legacy item
        that only carries ``result`` becomes a single ``output`` entry.
        """
        entries: List[Entry] = []
        raw_entries = d.get("conversations")
        if isinstance(raw_entries, list):
            for raw in raw_entries:
                try:
                    entries.append(Entry.from_dict(raw))
                except (TypeError, ValueError):
                    if skipped is not None:
                        skipped.append(raw)
        elif isinstance(d.get("result"), str) and d["result"]:
            entries.append(Entry.output(d["result"]))

        record = cls(
            key=str(d.get("key", "")),
            label=str(d.get("label") or "imported"),
            conversation=entries,
            note_name=str(d.get("noteName") or ""),
            stat_id=str(d.get("statId") or ""),
        )
        record.refresh_cached_result()
        return record
