from summar.conversation_window import (
    MAX_CONVERSATION_TURNS, assistant_role_for, build_conversation_window,
)
from summar.records import Entry, Role


def _history(turns=50):
    log = [Entry.output("summary v1")]
    for i in range(turns):
        role = Role.USER if i % 2 == 0 else Role.ASSISTANT
        log.append(Entry.conversation(role, f"turn {i}"))
    log.append(Entry.output("summary v2"))
    return log


def test_window_keeps_outputs_and_last_turns():
    window = build_conversation_window(_history(50), "gpt-4o")
    assert len(window) == 2 + MAX_CONVERSATION_TURNS == 17
    assert [w["text"] for w in window[:2]] == ["summary v1", "summary v2"]
    assert [w["text"] for w in window[2:]] == [f"turn {i}" for i in range(35, 50)]
    assert all(w["type"] == "output" for w in window[:2])
    assert all(w["type"] == "conversation" for w in window[2:])


def test_short_history_is_kept_whole():
    log = _history(4)
    window = build_conversation_window(log, "gpt-4o")
    assert len(window) == 6


def test_gemini_remaps_assistant_only():
    window = build_conversation_window(_history(6), "gemini-2.5-flash")
    roles = {w["role"] for w in window}
    assert roles == {"user", "model"}
    turn_roles = [w["role"] for w in window[2:]]
    assert turn_roles == ["user", "model"] * 3


def test_other_models_keep_assistant_role():
    assert assistant_role_for("gpt-4o") == "assistant"
    assert assistant_role_for("Gemini-Pro") == "model"
    assert assistant_role_for("") == "assistant"


def test_notesync_counts_as_output():
    log = [Entry.output("v1"), Entry.notesync("edited")]
    log += [Entry.conversation(Role.USER, f"q{i}") for i in range(20)]
    window = build_conversation_window(log, "gpt-4o")
    assert [w["type"] for w in window[:2]] == ["output", "notesync"]
    assert len(window) == 17


def test_history_is_not_mutated():
    log = _history(30)
    before = [e.to_dict() for e in log]
    build_conversation_window(log, "gemini-2.5-pro")
    assert [e.to_dict() for e in log] == before
