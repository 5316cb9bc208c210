import pytest

from summar.records import EntryKind, Role
from summar.workers import (
    PLACEHOLDER_TEXT, ConversationDriver, StreamingCLIWorker, TaskStreamDriver,
    _stream_parser_json, build_reply_prompt, parser_for,
)


class FakeSignal:
    def __init__(self):
        self._slots = []

    def connect(self, slot):
        self._slots.append(slot)

    def emit(self, *args):
        for slot in list(self._slots):
            slot(*args)


class FakeWorker:
    def __init__(self, prompt=""):
        self.prompt = prompt
        self.fragment = FakeSignal()
        self.completed = FakeSignal()
        self.started = False

    def start(self):
        self.started = True


def test_task_append_mode_streams_then_seals(store, clock, rendered):
    worker = FakeWorker()
    driver = TaskStreamDriver(store, "k", "pdf summary", worker)
    done = []
    driver.finished.connect(done.append)
    driver.start()
    assert worker.started
    assert "k" in store

    for piece in ("Intro. ", "Body. ", "End."):
        worker.fragment.emit(piece)
    assert store.get_text("k") == "Intro. Body. End."
    assert store.get_conversation("k") == []

    worker.completed.emit("Intro. Body. End.", "", 0)
    entries = store.get_conversation("k")
    assert [(e.kind, e.text) for e in entries] == [(EntryKind.OUTPUT, "Intro. Body. End.")]
    assert done == ["k"]
    clock.advance(60)
    assert rendered == [("k", "<p>Intro. Body. End.</p>")]


def test_task_replace_mode_grows_shown_text(store):
    worker = FakeWorker()
    TaskStreamDriver(store, "k", "web", worker, mode="replace").start()
    worker.fragment.emit("a")
    worker.fragment.emit("b")
    assert store.get_text("k") == "ab"
    assert store.get_conversation("k") == []


def test_task_failure_reports_error_without_sealing(store):
    worker = FakeWorker()
    driver = TaskStreamDriver(store, "k", "pdf", worker)
    errors = []
    driver.error.connect(lambda key, message: errors.append((key, message)))
    driver.start()
    worker.fragment.emit("half")
    worker.completed.emit("half", "traceback\nQuotaExceeded", 1)
    assert errors == [("k", "**Error:** QuotaExceeded")]
    assert store.get_conversation("k") == []
    assert store.get_text("k") == "half"


def test_unknown_stream_mode_rejected(store):
    with pytest.raises(ValueError):
        TaskStreamDriver(store, "k", "pdf", FakeWorker(), mode="sideways")


def test_conversation_reply_updates_placeholder(store):
    store.replace_text("k", "pdf", "the summary", True)
    workers = []

    def factory(prompt):
        workers.append(FakeWorker(prompt))
        return workers[-1]

    driver = ConversationDriver(store, "k", "gemini-2.5-flash", factory)
    assert driver.send("what are the risks?") is True

    worker = workers[0]
    assert worker.started
    assert "the summary" in worker.prompt
    assert "User: what are the risks?" in worker.prompt
    entries = store.get_conversation("k")
    assert entries[-1].text == PLACEHOLDER_TEXT
    assert entries[-1].role == Role.ASSISTANT

    worker.fragment.emit("Three ")
    worker.fragment.emit("risks.")
    assert store.get_text("k") == "Three risks."
    worker.completed.emit("Three risks.", "", 0)

    entries = store.get_conversation("k")
    assert [e.text for e in entries] == ["the summary", "what are the risks?", "Three risks."]


def test_conversation_failure_writes_error_turn(store):
    worker = FakeWorker()
    driver = ConversationDriver(store, "k", "gpt-4o", lambda prompt: worker)
    errors = []
    driver.error.connect(lambda key, message: errors.append(message))
    driver.send("hello")
    worker.completed.emit("", "", -2)
    assert errors == ["*Cancelled.*"]
    assert store.get_text("k") == "*Cancelled.*"


def test_conversation_send_to_deleted_record_is_dropped(store):
    store.append_text("k", "pdf", "x")
    store.delete_record("k")
    created = []
    driver = ConversationDriver(store, "k", "gpt-4o", lambda p: created.append(p))
    assert driver.send("late question") is False
    assert created == []


def test_json_stream_parser():
    assert _stream_parser_json('{"text": "hi"}\n') == "hi"
    block = '{"message": {"content": [{"type": "text", "text": "a"}, {"type": "thinking"}]}}'
    assert _stream_parser_json(block) == "a"
    assert _stream_parser_json("plain line\n") == "plain line\n"
    assert _stream_parser_json("   ") is None


def test_build_reply_prompt_orders_document_then_turns():
    prompt = build_reply_prompt([
        {"role": "assistant", "type": "output", "text": "doc"},
        {"role": "user", "type": "conversation", "text": "q"},
        {"role": "model", "type": "conversation", "text": "a"},
    ])
    assert prompt.index("doc") < prompt.index("User: q") < prompt.index("Assistant: a")
    assert prompt.rstrip().endswith("Assistant:")


def test_parser_for_stream_format():
    assert parser_for("json") is _stream_parser_json
    assert parser_for("raw")("line\n") == "line\n"
    assert parser_for("xml")("line\n") == "line\n"


def test_for_model_uses_configured_stream_format():
    worker = StreamingCLIWorker.for_model("summar-cli", "gpt-4o", "prompt",
                                          ["--quiet"], stream_format="json")
    assert worker.command == ["summar-cli", "--model", "gpt-4o", "--quiet"]
    assert worker.prompt == "prompt"
    assert worker._parser_fn is _stream_parser_json


def test_task_stat_id_is_stamped_and_saved(store):
    worker = FakeWorker()
    TaskStreamDriver(store, "k", "pdf", worker, stat_id="run-42").start()
    worker.completed.emit("done", "", 0)
    assert store.get("k").stat_id == "run-42"
    assert store.get("k").to_dict()["statId"] == "run-42"
