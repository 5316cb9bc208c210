"""
Debounced per-key rendering.

Streaming producers can push dozens of fragments per second into a record.
Re-rendering markdown for every fragment is wasteful, so each mutation only
(re)arms a short single-shot timer for its key; when the burst goes quiet
the current text is rendered once and applied once.

The scheduler owns the ``key -> timer`` table.  Timers come from a factory
so tests can drive time by hand instead of spinning a Qt event loop.
"""
from __future__ import annotations

from typing import Callable, Dict, List, Optional, Protocol

from PyQt6.QtCore import QObject, QTimer

from summar.constants import RENDER_DEBOUNCE_MS, logger


class TimerHandle(Protocol):
    def stop(self) -> None: ...


TimerFactory = Callable[[int, Callable[[], None]], TimerHandle]


class _QtTimerHandle:
    def __init__(self, timer: QTimer):
        self._timer = timer

    def stop(self) -> None:
        self._timer.stop()
        self._timer.deleteLater()


class QtTimerFactory:
    """Create single-shot ``QTimer``s parented to *parent*.

    The parent owns each timer; a fired or stopped timer deletes itself
    through ``deleteLater``.
    """

    def __init__(self, parent: Optional[QObject] = None):
        self._parent = parent

    def __call__(self, interval_ms: int, callback: Callable[[], None]) -> TimerHandle:
        timer = QTimer(self._parent)
        timer.setSingleShot(True)
        timer.setInterval(interval_ms)
        timer.timeout.connect(callback)
        timer.timeout.connect(timer.deleteLater)
        timer.start()
        return _QtTimerHandle(timer)


class RenderScheduler:
    """Coalesce bursts of text mutations into one render per quiet period.

    ``text_for(key)`` returns the record's current text, ``render_fn`` turns
    raw text into presentation-ready markup, and ``apply_fn(key, rendered)``
    pushes it to the screen.  Keys are independent of one another.
    """

    def __init__(self,
                 text_for: Callable[[str], str],
                 render_fn: Callable[[str], str],
                 apply_fn: Callable[[str, str], None],
                 timer_factory: Optional[TimerFactory] = None,
                 interval_ms: int = RENDER_DEBOUNCE_MS):
        self._text_for = text_for
        self._render_fn = render_fn
        self._apply_fn = apply_fn
        self._timer_factory: TimerFactory = timer_factory or QtTimerFactory()
        self.interval_ms = interval_ms
        self._timers: Dict[str, TimerHandle] = {}
        self.render_count = 0

    # -- public API --

    def schedule(self, key: str) -> None:
        """Restart the debounce window for *key*."""
        self.cancel(key)
        slot: List[TimerHandle] = []
        slot.append(self._timer_factory(
            self.interval_ms, lambda: self._fire(key, slot[0])))
        self._timers[key] = slot[0]

    def cancel(self, key: str) -> bool:
        """Drop the pending render for *key*.  Returns True if one existed."""
        timer = self._timers.pop(key, None)
        if timer is None:
            return False
        timer.stop()
        return True

    def cancel_all(self) -> int:
        count = len(self._timers)
        for timer in self._timers.values():
            timer.stop()
        self._timers.clear()
        if count:
            logger.debug(f"RenderScheduler: cancelled {count} pending render(s)")
        return count

    def pending(self, key: str) -> bool:
        return key in self._timers

    def pending_keys(self) -> List[str]:
        return list(self._timers)

    def flush(self, key: str) -> bool:
        """Render *key* right now if it has a pending timer."""
        if not self.cancel(key):
            return False
        self._render(key)
        return True

    # -- private --

    def _fire(self, key: str, timer: TimerHandle) -> None:
        # A stale timer whose slot was already replaced or cancelled is ignored
        if self._timers.get(key) is not timer:
            return
        del self._timers[key]
        self._render(key)

    def _render(self, key: str) -> None:
        try:
            rendered = self._render_fn(self._text_for(key))
            self._apply_fn(key, rendered)
            self.render_count += 1
        except Exception as e:
            logger.error(f"RenderScheduler: render failed for key={key}: {e}",
                         exc_info=True)
