"""
Floating ("sticky") header tracking for the output list.

When a record's body is expanded and tall enough that its own header has
scrolled out of view, a duplicate header floats over the top of the list
so the record's controls stay reachable.  Exactly one floating header can
exist at a time, for the topmost record in view.

The tracker is a two-state machine, ``Hidden`` and ``Showing(key)``.  It
never touches widgets directly: geometry questions go through a
:class:`ViewportProbe` and drawing goes through a :class:`HeaderPresenter`,
both supplied by the view (see ``summar.output_view``).  That keeps the
transition rules testable without a rendering surface.

Inputs that trigger re-evaluation:

* geometry changes (resize, content growth): immediate;
* scrolling: throttled so a fling evaluates at most once per window;
* fold/unfold and record removal: immediate.

Any inconsistency (the probe raises, or the anchor record is gone) ends in
``Hidden``.  Evaluation never raises.
"""
from __future__ import annotations

from typing import Callable, Iterable, Optional, Protocol, Set, Tuple

from PyQt6.QtCore import QObject, pyqtSignal

from summar.constants import SCROLL_THROTTLE_MS, logger
from summar.render_scheduler import QtTimerFactory, TimerFactory, TimerHandle


class ViewportProbe(Protocol):
    """Geometry queries answered by the presentation layer."""

    def visible_header_keys(self) -> Set[str]:
        """Keys whose real header currently intersects the visible region."""
        ...

    def topmost_visible_key(self) -> Optional[str]:
        """Key of the first record overlapping the visible region."""
        ...

    def is_expanded(self, key: str) -> bool:
        """True if *key* exists and its body is unfolded."""
        ...


class HeaderPresenter(Protocol):
    def show(self, key: str) -> None:
        """Build the floating header for *key* and place it."""
        ...

    def reposition(self, key: str) -> None:
        """Re-match size and position to the real header of *key*."""
        ...

    def hide(self) -> None:
        ...


def first_visible_key(items: Iterable[Tuple[str, int, int]],
                      top: int, bottom: int) -> Optional[str]:
    """Return the first ``(key, item_top, item_bottom)`` overlapping
    ``[top, bottom)``, in list order."""
    for key, item_top, item_bottom in items:
        if item_bottom > top and item_top < bottom:
            return key
    return None


class VisibilityTracker(QObject):
    """Decide which record, if any, gets the floating header."""

    # key of the record now showing a floating header, or "" when hidden
    changed = pyqtSignal(str)

    def __init__(self, probe: ViewportProbe, presenter: HeaderPresenter,
                 timer_factory: Optional[TimerFactory] = None,
                 throttle_ms: int = SCROLL_THROTTLE_MS,
                 parent: Optional[QObject] = None):
        super().__init__(parent)
        self._probe = probe
        self._presenter = presenter
        self._timer_factory: TimerFactory = timer_factory or QtTimerFactory(self)
        self.throttle_ms = throttle_ms
        self._current_key: Optional[str] = None
        self._scroll_timer: Optional[TimerHandle] = None
        self._toggling = False
        self.visible_headers: Set[str] = set()
        self.evaluations = 0

    # -- state --

    @property
    def current_key(self) -> Optional[str]:
        return self._current_key

    @property
    def is_showing(self) -> bool:
        return self._current_key is not None

    # -- inputs --

    def on_geometry_changed(self) -> Optional[str]:
        if self._current_key is not None:
            self._safe_reposition(self._current_key)
        return self.evaluate()

    def on_scroll(self) -> None:
        """Throttled: the first scroll in a window arms one evaluation."""
        if self._scroll_timer is not None:
            return
        self._scroll_timer = self._timer_factory(self.throttle_ms, self._on_scroll_timeout)

    def on_fold_changed(self, key: str) -> Optional[str]:
        logger.debug(f"VisibilityTracker: fold changed for key={key}")
        return self.evaluate()

    def on_record_removed(self, key: str) -> Optional[str]:
        self.visible_headers.discard(key)
        if key == self._current_key:
            logger.debug(f"VisibilityTracker: anchor key={key} removed, hiding")
            self._set_hidden()
        return self.evaluate()

    def toggle_from_floating(self, key: str, toggle: Callable[[str], object]) -> bool:
        """Run *toggle(key)* for a click on the floating header's fold button.

        A second click arriving while the first is still being handled
        (the toggle re-enters through fold signals) is ignored.
        """
        if self._toggling:
            logger.debug(f"VisibilityTracker: toggle already in progress for key={key}")
            return False
        self._toggling = True
        try:
            toggle(key)
        finally:
            self._toggling = False
        self.evaluate()
        return True

    # -- core rule --

    def evaluate(self) -> Optional[str]:
        """Re-apply the visibility rule and return the key now shown."""
        self.evaluations += 1
        try:
            self.visible_headers = set(self._probe.visible_header_keys())
            first = self._probe.topmost_visible_key()
            show = (first is not None
                    and first not in self.visible_headers
                    and bool(self._probe.is_expanded(first)))
        except Exception as e:
            logger.debug(f"VisibilityTracker: probe failed ({e}), hiding")
            self._set_hidden()
            return None

        if not show:
            self._set_hidden()
            return None
        self._set_showing(first)
        return self._current_key

    def dispose(self) -> None:
        if self._scroll_timer is not None:
            self._scroll_timer.stop()
            self._scroll_timer = None
        self._set_hidden()

    # -- transitions --

    def _set_showing(self, key: str) -> None:
        if key == self._current_key:
            self._safe_reposition(key)
            return
        try:
            self._presenter.show(key)
        except Exception as e:
            logger.warning(f"VisibilityTracker: could not show floating header "
                           f"for key={key}: {e}")
            self._set_hidden()
            return
        self._current_key = key
        logger.debug(f"VisibilityTracker: showing floating header for key={key}")
        self.changed.emit(key)

    def _set_hidden(self) -> None:
        was_showing = self._current_key is not None
        self._current_key = None
        try:
            self._presenter.hide()
        except Exception as e:
            logger.debug(f"VisibilityTracker: presenter hide failed: {e}")
        if was_showing:
            self.changed.emit("")

    def _safe_reposition(self, key: str) -> None:
        try:
            self._presenter.reposition(key)
        except Exception as e:
            logger.debug(f"VisibilityTracker: reposition failed for key={key}: {e}")
            self._set_hidden()

    def _on_scroll_timeout(self) -> None:
        self._scroll_timer = None
        self.evaluate()
