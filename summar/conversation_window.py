"""
Build the bounded turn list sent with a "reply" model call.

A record's history can grow without limit, but the request must not.  The
window keeps every authoritative result (``output``/``notesync`` entries:
they are the document being discussed) plus only the most recent dialogue
turns, and renames the assistant role for model families that use a
different vocabulary.  The stored history is never touched.
"""
from __future__ import annotations

from typing import Dict, List, Sequence

from summar.records import Entry, EntryKind, Role

MAX_CONVERSATION_TURNS = 15

# model-name prefix -> role the provider expects for assistant turns
ASSISTANT_ROLE_BY_FAMILY: Dict[str, str] = {
    "gemini": "model",
}


def assistant_role_for(model: str) -> str:
    """Return the assistant role name used by *model*'s provider."""
    name = (model or "").strip().lower()
    for prefix, role in ASSISTANT_ROLE_BY_FAMILY.items():
        if name.startswith(prefix):
            return role
    return Role.ASSISTANT.value


def build_conversation_window(conversation: Sequence[Entry], model: str,
                              max_turns: int = MAX_CONVERSATION_TURNS
                              ) -> List[Dict[str, str]]:
    """Return ``[{"role", "text", "type"}, ...]`` for a model request.

    Outputs come first, then the newest *max_turns* dialogue turns, each
    group in its original order.
    """
    outputs = [e for e in conversation if e.kind != EntryKind.CONVERSATION]
    turns = [e for e in conversation if e.kind == EntryKind.CONVERSATION]
    if max_turns <= 0:
        turns = []
    elif len(turns) > max_turns:
        turns = turns[-max_turns:]

    assistant_role = assistant_role_for(model)
    window: List[Dict[str, str]] = []
    for entry in outputs + turns:
        role = entry.role.value
        if entry.role == Role.ASSISTANT:
            role = assistant_role
        window.append({"role": role, "text": entry.text, "type": entry.kind.value})
    return window
