import re

from summar.records import EntryKind, Role


def test_replace_partial_then_final_adds_one_output(store):
    store.replace_text("k", "pdf", "partial", False)
    assert store.get_conversation("k") == []
    assert store.get_text("k") == "partial"

    store.replace_text("k", "pdf", "final", True)
    entries = store.get_conversation("k")
    assert len(entries) == 1
    assert entries[0].kind == EntryKind.OUTPUT
    assert entries[0].text == "final"
    assert store.get_text("k") == "final"


def test_append_creates_record_and_tracks_label(store):
    created, changed = [], []
    store.record_created.connect(created.append)
    store.header_changed.connect(changed.append)

    store.append_text("k", "web", "a")
    store.append_text("k", "web", "b")
    store.append_text("k", "web summary", "c")

    assert created == ["k"]
    assert changed == ["k"]
    assert store.get_label("k") == "web summary"
    assert store.get_text("k") == "abc"


def test_create_record_is_insert_if_absent(store):
    first = store.create_record("k", "pdf")
    again = store.create_record("k", "other")
    assert first is again
    assert store.get_label("k") == "pdf"
    assert len(store) == 1


def test_add_turn_to_unknown_key_creates_chat_record(store):
    entries, index = store.add_conversation_turn("new", Role.USER, "hi")
    assert index == 0
    assert [e.text for e in entries] == ["hi"]
    assert store.get_label("new") == "chat"


def test_add_turn_keeps_existing_label(store):
    store.replace_text("k", "pdf", "summary", True)
    _, index = store.add_conversation_turn("k", Role.USER, "question")
    assert index == 1
    assert store.get_label("k") == "pdf"
    assert store.get_text("k") == "question"


def test_update_turn_in_place(store):
    store.replace_text("k", "pdf", "summary", True)
    store.add_conversation_turn("k", Role.USER, "question")
    _, index = store.add_conversation_turn("k", Role.ASSISTANT, "...")

    assert store.update_conversation_turn("k", index, "answer") is True
    entries = store.get_conversation("k")
    assert len(entries) == 3
    assert entries[index].text == "answer"
    assert store.get_text("k") == "answer"


def test_update_turn_rejects_bad_targets(store):
    store.replace_text("k", "pdf", "summary", True)
    assert store.update_conversation_turn("missing", 0, "x") is False
    assert store.update_conversation_turn("k", 5, "x") is False
    assert store.update_conversation_turn("k", -1, "x") is False
    # index 0 is an output entry, not a dialogue turn
    assert store.update_conversation_turn("k", 0, "x") is False
    assert store.get_text("k") == "summary"


def test_streaming_placeholder_rewritten_after_a_later_turn(store):
    store.replace_text("k", "pdf", "summary", True)
    store.add_conversation_turn("k", Role.USER, "first question")
    _, placeholder = store.add_conversation_turn("k", Role.ASSISTANT, "...")
    store.add_conversation_turn("k", Role.USER, "second question")

    assert store.update_conversation_turn("k", placeholder, "first answer") is True
    assert [e.text for e in store.get_conversation("k")] == [
        "summary", "first question", "first answer", "second question"]


def test_not_found_reads_are_empty(store):
    assert store.get("nope") is None
    assert store.get_text("nope") == ""
    assert store.get_label("nope") == ""
    assert store.get_note_name("nope") == ""
    assert store.get_conversation("nope") == []
    assert store.is_folded("nope") is False
    assert "nope" not in store
    assert store.delete_record("nope") is False


def test_get_text_empty_key_joins_all(store):
    store.replace_text("a", "x", "one", True)
    store.create_record("empty", "x")
    store.replace_text("b", "y", "two", True)
    assert store.get_text("") == "one\n\ntwo"


def test_late_write_after_delete_is_dropped(store, clock, rendered):
    store.append_text("k", "pdf", "a")
    store.delete_record("k")

    store.append_text("k", "pdf", "late")
    store.replace_text("k", "pdf", "late final", True)
    assert store.add_conversation_turn("k", Role.ASSISTANT, "late") == ([], -1)
    clock.advance(100)

    assert "k" not in store
    assert rendered == []


def test_explicit_create_clears_tombstone(store):
    store.append_text("k", "pdf", "a")
    store.delete_record("k")
    store.create_record("k", "pdf")
    store.append_text("k", "pdf", "b")
    assert store.get_text("k") == "b"
    assert store._tombstones == set()


def test_adopt_clears_tombstone(store):
    store.replace_text("k", "pdf", "a", True)
    record = store.get("k")
    store.delete_record("k")
    assert store._tombstones == {"k"}

    assert store.adopt(record) is True
    assert store._tombstones == set()
    store.append_text("k", "pdf", " more")
    assert store.get_text("k") == "a more"


def test_clear_all_without_persistence(store, clock, rendered):
    removed = []
    store.record_removed.connect(removed.append)
    store.append_text("a", "x", "1")
    store.append_text("b", "y", "2")

    assert store.clear_all() == ""
    assert len(store) == 0
    assert removed == ["a", "b"]
    clock.advance(100)
    assert rendered == []


def test_delete_from_removal_handler_during_clear_is_ignored(store):
    results = []
    store.record_removed.connect(lambda key: results.append(store.delete_record("b")))
    store.append_text("a", "x", "1")
    store.append_text("b", "y", "2")
    store.clear_all()
    assert results == [False, False]
    assert len(store) == 0


def test_fold_one_and_all(store):
    folded = []
    store.fold_changed.connect(folded.append)
    for key in ("a", "b", "c"):
        store.create_record(key, "x")

    store.set_folded("b", True)
    assert folded == ["b"]
    store.set_folded(None, True)
    assert folded == ["b", "a", "c"]
    assert all(store.is_folded(k) for k in ("a", "b", "c"))

    assert store.toggle_fold("a") is False
    assert store.is_folded("a") is False


def test_enable_note_default_name(store):
    changed = []
    store.header_changed.connect(changed.append)
    store.create_record("k", "pdf")
    name = store.enable_note("k")
    assert re.fullmatch(r"\d{6}-\d{4}\.md", name)
    assert store.get_note_name("k") == name
    assert changed == ["k"]


def test_enable_note_appends_extension(store):
    store.create_record("k", "pdf")
    assert store.enable_note("k", "notes/report") == "notes/report.md"
    assert store.enable_note("k", "notes/other.md") == "notes/other.md"
    assert store.enable_note("missing") == ""


def test_sync_note_appends_notesync(store):
    store.replace_text("k", "pdf", "v1", True)
    assert store.sync_note("k", "edited") is True
    entries = store.get_conversation("k")
    assert entries[-1].kind == EntryKind.NOTESYNC
    assert store.get_text("k") == "edited"
    assert store.sync_note("missing", "x") is False


def test_adopt_never_overwrites(store):
    from summar.records import OutputRecord

    store.replace_text("k", "pdf", "mine", True)
    assert store.adopt(OutputRecord(key="k", label="other")) is False
    assert store.get_label("k") == "pdf"
    assert store.adopt(OutputRecord(key="n", label="new", cached_result="x")) is True
    assert store.keys() == ["k", "n"]
