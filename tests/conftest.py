"""Shared fixtures: importable project root, an offscreen Qt application, and
a hand-driven clock standing in for QTimer."""

import os
import sys

import pytest

PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))

if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

# Widgets are built without a display
os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")

from PyQt6.QtWidgets import QApplication  # noqa: E402

from summar.record_store import RecordStore  # noqa: E402


class ManualTimer:
    def __init__(self, due, callback):
        self.due = due
        self.callback = callback
        self.active = True

    def stop(self):
        self.active = False


class ManualClock:
    """Timer factory whose time only moves when ``advance`` is called."""

    def __init__(self):
        self.now = 0
        self.timers = []

    def __call__(self, interval_ms, callback):
        timer = ManualTimer(self.now + interval_ms, callback)
        self.timers.append(timer)
        return timer

    @property
    def active(self):
        return [t for t in self.timers if t.active]

    def advance(self, ms):
        target = self.now + ms
        while True:
            due = sorted((t for t in self.active if t.due <= target), key=lambda t: t.due)
            if not due:
                break
            timer = due[0]
            self.now = timer.due
            timer.active = False
            timer.callback()
        self.now = target


def fake_render(text):
    return f"<p>{text}</p>"


@pytest.fixture(scope="session", autouse=True)
def qt_app():
    app = QApplication.instance() or QApplication([])
    yield app


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def store(clock):
    return RecordStore(render_fn=fake_render, timer_factory=clock)


@pytest.fixture
def rendered(store):
    """List of ``(key, markup)`` pairs applied by the store's scheduler."""
    calls = []
    store.rendered.connect(lambda key, html: calls.append((key, html)))
    return calls
