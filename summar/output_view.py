"""
Presentation layer: the scrolling list of output records.

Widgets here only reflect state.  Every button goes through the
:class:`RecordStore` and the view updates from the store's signals, so the
same record can be driven by a streaming worker, a reply, an import, or a
click without the widgets knowing which.

Layout::

    OutputPanel
    ├── toolbar   (save · load · fold all · unfold all · clear)
    ├── QScrollArea
    │   └── container
    │       ├── OutputItemWidget  (header bar + auto-sizing body)
    │       ├── ...
    │       └── stretch
    │   └── floating header bar (child of the viewport, see FloatingHeader)
    └── status line
"""
import asyncio
import uuid
from typing import Dict, List, Optional, Set

from PyQt6.QtCore import QEvent, QObject, QPoint, QSize, Qt, QTimer, pyqtSignal
from PyQt6.QtGui import QFont
from PyQt6.QtWidgets import (
    QApplication, QFrame, QHBoxLayout, QInputDialog, QLabel, QMessageBox,
    QPushButton, QScrollArea, QSizePolicy, QTextBrowser, QVBoxLayout, QWidget,
)

from summar.constants import logger
from summar.icons import IconManager, icon_for_label
from summar.notes import NoteGateway, VaultNoteGateway, link_note, pull_note
from summar.persistence import PersistenceManager
from summar.record_store import RecordStore
from summar.settings import PanelSettings
from summar.visibility import VisibilityTracker, first_visible_key
from summar.workers import (
    ConversationDriver, StreamingCLIWorker, TaskStreamDriver, parser_for,
)


# ---------------------------------------------------------------------------
# Auto-sizing QTextBrowser that grows to fit its content
# ---------------------------------------------------------------------------

class _AutoSizingBrowser(QTextBrowser):
    """Body browser without its own scrollbar; the outer QScrollArea
    scrolls the whole list."""

    def __init__(self, parent=None):
        super().__init__(parent)
        self.setVerticalScrollBarPolicy(Qt.ScrollBarPolicy.ScrollBarAlwaysOff)
        self.setHorizontalScrollBarPolicy(Qt.ScrollBarPolicy.ScrollBarAlwaysOff)
        self.setSizePolicy(QSizePolicy.Policy.Preferred, QSizePolicy.Policy.Minimum)
        self.document().contentsChanged.connect(self._update_height)
        self.setReadOnly(True)
        self.setOpenExternalLinks(True)
        self.document().setDocumentMargin(4)

    def _update_height(self):
        doc_height = int(self.document().size().height()) + 6
        self.setMinimumHeight(doc_height)
        self.setMaximumHeight(doc_height)

    def resizeEvent(self, event):
        super().resizeEvent(event)
        self._update_height()


# ---------------------------------------------------------------------------
# Header bar (shared by the in-list header and the floating copy)
# ---------------------------------------------------------------------------

class _HeaderBar(QFrame):
    """Icon, label, linked-note name and the record's action buttons."""

    reply_clicked = pyqtSignal()
    note_clicked = pyqtSignal()
    copy_clicked = pyqtSignal()
    delete_clicked = pyqtSignal()
    fold_clicked = pyqtSignal()

    def __init__(self, parent=None):
        super().__init__(parent)
        self.setObjectName("output_header")
        self.setFrameShape(QFrame.Shape.StyledPanel)
        self.setAutoFillBackground(True)
        self.setSizePolicy(QSizePolicy.Policy.Expanding, QSizePolicy.Policy.Fixed)

        row = QHBoxLayout(self)
        row.setContentsMargins(6, 2, 4, 2)
        row.setSpacing(4)

        self._icon_label = QLabel()
        self._icon_label.setFixedSize(16, 16)
        row.addWidget(self._icon_label)

        self._label = QLabel()
        font = self._label.font()
        font.setWeight(QFont.Weight.DemiBold)
        self._label.setFont(font)
        row.addWidget(self._label)

        self._note_label = QLabel()
        self._note_label.setObjectName("output_note_label")
        self._note_label.setVisible(False)
        row.addWidget(self._note_label)
        row.addStretch()

        def _add_btn(icon_name, tooltip, signal):
            btn = QPushButton()
            btn.setIcon(IconManager.get_icon(icon_name, size=16))
            btn.setIconSize(QSize(16, 16))
            btn.setFixedSize(26, 26)
            btn.setFlat(True)
            btn.setToolTip(tooltip)
            btn.setCursor(Qt.CursorShape.PointingHandCursor)
            btn.clicked.connect(lambda: signal.emit())
            row.addWidget(btn)
            return btn

        self.reply_btn = _add_btn("reply", "Reply to this output", self.reply_clicked)
        self.note_btn = _add_btn("file_plus", "Save as note", self.note_clicked)
        self.copy_btn = _add_btn("copy", "Copy to clipboard", self.copy_clicked)
        self.delete_btn = _add_btn("trash", "Delete output", self.delete_clicked)
        self.fold_btn = _add_btn("chevron_up", "Fold", self.fold_clicked)

    def refresh(self, label: str, note_name: str, folded: bool):
        self._icon_label.setPixmap(IconManager.get_pixmap(icon_for_label(label), size=16))
        self._label.setText(label)
        self._note_label.setText(note_name)
        self._note_label.setVisible(bool(note_name))
        self.note_btn.setToolTip("Sync from note" if note_name else "Save as note")
        self.fold_btn.setIcon(IconManager.get_icon(
            "chevron_down" if folded else "chevron_up", size=16))
        self.fold_btn.setToolTip("Unfold" if folded else "Fold")


# ---------------------------------------------------------------------------
# One record
# ---------------------------------------------------------------------------

class OutputItemWidget(QFrame):
    """Header bar plus rendered body for a single record."""

    def __init__(self, key: str, parent=None):
        super().__init__(parent)
        self.key = key
        self.setObjectName("output_item")
        self.setSizePolicy(QSizePolicy.Policy.Preferred, QSizePolicy.Policy.Maximum)

        layout = QVBoxLayout(self)
        layout.setContentsMargins(0, 0, 0, 0)
        layout.setSpacing(2)

        self.header = _HeaderBar(self)
        layout.addWidget(self.header)

        self.body = _AutoSizingBrowser(self)
        self.body.setObjectName("output_body")
        layout.addWidget(self.body)

    def set_markup(self, html: str):
        self.body.setHtml(html)

    def set_folded(self, folded: bool):
        self.body.setVisible(not folded)

    def header_span(self, viewport: QWidget) -> tuple:
        """``(top, bottom)`` of the header in *viewport* coordinates."""
        top = self.header.mapTo(viewport, QPoint(0, 0)).y()
        return top, top + self.header.height()

    def item_span(self, viewport: QWidget) -> tuple:
        top = self.mapTo(viewport, QPoint(0, 0)).y()
        return top, top + self.height()


# ---------------------------------------------------------------------------
# Visibility collaborators
# ---------------------------------------------------------------------------

class ScrollAreaViewport:
    """Answers the tracker's geometry questions from live widget positions."""

    def __init__(self, panel: "OutputPanel"):
        self._panel = panel

    def _spans(self, header: bool):
        viewport = self._panel.scroll_area.viewport()
        for key, item in self._panel.items():
            if not item.isVisible():
                continue
            top, bottom = item.header_span(viewport) if header else item.item_span(viewport)
            yield key, top, bottom

    def visible_header_keys(self) -> Set[str]:
        height = self._panel.scroll_area.viewport().height()
        return {key for key, top, bottom in self._spans(header=True)
                if bottom > 0 and top < height}

    def topmost_visible_key(self) -> Optional[str]:
        height = self._panel.scroll_area.viewport().height()
        return first_visible_key(self._spans(header=False), 0, height)

    def is_expanded(self, key: str) -> bool:
        return key in self._panel.store and not self._panel.store.is_folded(key)


class FloatingHeader:
    """Draws the floating copy of a record's header over the viewport.

    Buttons on the copy forward to the real header, except fold which goes
    through the tracker's guarded toggle.
    """

    def __init__(self, panel: "OutputPanel"):
        self._panel = panel
        self._bar: Optional[_HeaderBar] = None
        self._key: Optional[str] = None

    @property
    def key(self) -> Optional[str]:
        return self._key

    def show(self, key: str) -> None:
        item = self._panel.item_widget(key)
        if item is None:
            raise KeyError(key)
        self.hide()

        bar = _HeaderBar(self._panel.scroll_area.viewport())
        bar.setObjectName("output_header_floating")
        real = item.header
        bar.reply_clicked.connect(lambda: real.reply_clicked.emit())
        bar.note_clicked.connect(lambda: real.note_clicked.emit())
        bar.copy_clicked.connect(lambda: real.copy_clicked.emit())
        bar.delete_clicked.connect(lambda: real.delete_clicked.emit())
        bar.fold_clicked.connect(lambda: self._panel.toggle_from_floating(key))

        self._bar = bar
        self._key = key
        self.refresh()
        self.reposition(key)
        bar.show()
        bar.raise_()

    def reposition(self, key: str) -> None:
        if self._bar is None or key != self._key:
            return
        item = self._panel.item_widget(key)
        if item is None:
            raise KeyError(key)
        viewport = self._panel.scroll_area.viewport()
        x = item.header.mapTo(viewport, QPoint(0, 0)).x()
        self._bar.setGeometry(x, 0, item.header.width(), item.header.height())

    def refresh(self) -> None:
        if self._bar is None or self._key is None:
            return
        store = self._panel.store
        self._bar.refresh(store.get_label(self._key), store.get_note_name(self._key),
                          store.is_folded(self._key))

    def hide(self) -> None:
        if self._bar is not None:
            self._bar.hide()
            self._bar.deleteLater()
        self._bar = None
        self._key = None


# ---------------------------------------------------------------------------
# Panel
# ---------------------------------------------------------------------------

class OutputPanel(QWidget):
    """Scrolling list of output records with persistence and reply actions."""

    def __init__(self, settings: Optional[PanelSettings] = None,
                 store: Optional[RecordStore] = None,
                 notes: Optional[NoteGateway] = None, parent=None):
        super().__init__(parent)
        self.settings = settings or PanelSettings()
        self.store = store if store is not None else RecordStore(parent=self)
        self.persistence = PersistenceManager(self.store, self.settings.snapshot_directory)
        self.notes: NoteGateway = (notes if notes is not None
                                  else VaultNoteGateway(self.settings.notes_directory))
        self._items: Dict[str, OutputItemWidget] = {}
        self._drivers: List[QObject] = []
        self._shut_down = False

        self._setup_ui()

        self.floating = FloatingHeader(self)
        self.tracker = VisibilityTracker(ScrollAreaViewport(self), self.floating, parent=self)

        self.store.record_created.connect(self._on_record_created)
        self.store.record_removed.connect(self._on_record_removed)
        self.store.header_changed.connect(self._on_header_changed)
        self.store.fold_changed.connect(self._on_fold_changed)
        self.store.rendered.connect(self._on_rendered)
        self.scroll_area.verticalScrollBar().valueChanged.connect(
            lambda _value: self.tracker.on_scroll())
        self.scroll_area.viewport().installEventFilter(self)
        self._container.installEventFilter(self)

    def _setup_ui(self):
        layout = QVBoxLayout(self)
        layout.setContentsMargins(0, 4, 0, 0)
        layout.setSpacing(4)

        toolbar = QHBoxLayout()
        toolbar.setContentsMargins(4, 0, 4, 0)

        def _add_btn(icon_name, tooltip, callback):
            btn = QPushButton()
            btn.setIcon(IconManager.get_icon(icon_name, size=16))
            btn.setIconSize(QSize(16, 16))
            btn.setFixedSize(28, 28)
            btn.setToolTip(tooltip)
            btn.setCursor(Qt.CursorShape.PointingHandCursor)
            btn.clicked.connect(lambda: callback())
            toolbar.addWidget(btn)
            return btn

        self._save_btn = _add_btn("save", "Save conversations", self.save_snapshot)
        self._load_btn = _add_btn("folder_open", "Load conversations", self.load_snapshot)
        self._fold_all_btn = _add_btn("chevrons_up", "Fold all",
                                      lambda: self.store.set_folded(None, True))
        self._unfold_all_btn = _add_btn("chevrons_down", "Unfold all",
                                        lambda: self.store.set_folded(None, False))
        toolbar.addStretch()
        self._clear_btn = _add_btn("trash", "Save and clear all outputs", self.clear_all)
        layout.addLayout(toolbar)

        self.scroll_area = QScrollArea()
        self.scroll_area.setWidgetResizable(True)
        self.scroll_area.setHorizontalScrollBarPolicy(Qt.ScrollBarPolicy.ScrollBarAlwaysOff)
        self.scroll_area.setObjectName("output_scroll_area")

        self._container = QWidget()
        self._container.setObjectName("output_container")
        self._list_layout = QVBoxLayout(self._container)
        self._list_layout.setContentsMargins(6, 6, 6, 6)
        self._list_layout.setSpacing(8)
        self._list_layout.addStretch()

        self.scroll_area.setWidget(self._container)
        layout.addWidget(self.scroll_area, stretch=1)

        self._status_label = QLabel()
        self._status_label.setObjectName("output_status")
        self._status_label.setVisible(False)
        layout.addWidget(self._status_label)

    # -- item lookup (used by the visibility collaborators) --

    def items(self):
        return list(self._items.items())

    def item_widget(self, key: str) -> Optional[OutputItemWidget]:
        return self._items.get(key)

    # -- producers --

    def start_task(self, label: str, command: List[str], key: Optional[str] = None,
                   mode: str = "append", stat_id: str = "") -> str:
        """Run *command* and stream its stdout into a (new) record."""
        key = key or uuid.uuid4().hex
        worker = StreamingCLIWorker(command,
                                    parser_fn=parser_for(self.settings.stream_format))
        driver = TaskStreamDriver(self.store, key, label, worker, mode=mode,
                                  stat_id=stat_id, parent=self)
        self._track_driver(driver)
        driver.start()
        return key

    def reply(self, key: str, text: Optional[str] = None) -> bool:
        """Ask a follow-up question about record *key*."""
        if key not in self.store:
            return False
        if text is None:
            text, ok = QInputDialog.getMultiLineText(
                self, "Reply", f"Reply to “{self.store.get_label(key)}”:")
            if not ok or not text.strip():
                return False
        s = self.settings

        def _worker(prompt: str):
            return StreamingCLIWorker.for_model(s.cli_binary, s.conversation_model,
                                                prompt, s.cli_extra_args,
                                                stream_format=s.stream_format)

        driver = ConversationDriver(self.store, key, s.conversation_model, _worker,
                                    parent=self)
        self._track_driver(driver)
        if not driver.send(text):
            self._release_driver(driver)
            return False
        return True

    def _track_driver(self, driver):
        self._drivers.append(driver)
        driver.finished.connect(lambda _key: self._release_driver(driver))
        driver.error.connect(lambda _key, message: self._on_driver_error(driver, message))

    def _release_driver(self, driver):
        if driver in self._drivers:
            self._drivers.remove(driver)

    def _on_driver_error(self, driver, message: str):
        self._show_status(message.replace("**", ""))
        self._release_driver(driver)

    # -- actions --

    def save_snapshot(self) -> str:
        try:
            path = asyncio.run(self.persistence.save())
        except OSError as e:
            logger.error(f"OutputPanel: save failed: {e}", exc_info=True)
            QMessageBox.warning(self, "Save Failed", f"Could not save conversations:\n{e}")
            return ""
        self._show_status(f"Saved to {path}" if path else "Nothing to save")
        return path

    def load_snapshot(self, filename: Optional[str] = None) -> int:
        if filename is None:
            names = self.persistence.list_snapshots()
            if len(names) > 1:
                filename, ok = QInputDialog.getItem(
                    self, "Load Conversations", "Snapshot:", names, 0, False)
                if not ok:
                    return 0
        count = asyncio.run(self.persistence.import_snapshot(filename))
        self._show_status(f"Loaded {count} conversation(s)" if count
                          else "No new conversations to load")
        return count

    def clear_all(self) -> str:
        try:
            path = self.store.clear_all()
        except OSError as e:
            logger.error(f"OutputPanel: clear aborted, save failed: {e}", exc_info=True)
            QMessageBox.warning(self, "Clear Failed",
                                f"Could not save conversations, nothing was cleared:\n{e}")
            return ""
        self._show_status(f"Saved to {path} and cleared" if path else "Cleared")
        return path

    def copy_output(self, key: str):
        QApplication.clipboard().setText(self.store.get_text(key))
        self._show_status("Copied to clipboard")

    def note_action(self, key: str):
        """Link a note on first click; later clicks pull the note's text."""
        try:
            if self.store.get_note_name(key):
                if pull_note(self.store, self.notes, key):
                    self._show_status("Synced from note")
                return
            name = link_note(self.store, self.notes, key)
            if name:
                self._show_status(f"Linked note {name}")
        except (OSError, ValueError) as e:
            logger.error(f"OutputPanel: note action failed for key={key}: {e}")
            QMessageBox.warning(self, "Note Error", str(e))

    def toggle_from_floating(self, key: str):
        self.tracker.toggle_from_floating(key, self.store.toggle_fold)

    def shutdown(self):
        """Persist, then tear down timers, the floating header and workers."""
        if self._shut_down:
            return
        self._shut_down = True
        try:
            asyncio.run(self.persistence.save())
        except OSError as e:
            logger.error(f"OutputPanel: save on shutdown failed: {e}", exc_info=True)
        self.tracker.dispose()
        self.store.scheduler.cancel_all()
        for driver in list(self._drivers):
            worker = getattr(driver, "worker", None)
            if worker is not None and worker.isRunning():
                worker.cancel()
                worker.wait(3000)
        self._drivers.clear()
        logger.info("OutputPanel: shut down")

    # -- store signal handlers --

    def _on_record_created(self, key: str):
        item = OutputItemWidget(key, self._container)
        header = item.header
        header.reply_clicked.connect(lambda: self.reply(key))
        header.note_clicked.connect(lambda: self.note_action(key))
        header.copy_clicked.connect(lambda: self.copy_output(key))
        header.delete_clicked.connect(lambda: self.store.delete_record(key))
        header.fold_clicked.connect(lambda: self.store.toggle_fold(key))
        header.refresh(self.store.get_label(key), self.store.get_note_name(key),
                       self.store.is_folded(key))
        item.set_folded(self.store.is_folded(key))

        self._items[key] = item
        self._list_layout.insertWidget(self._list_layout.count() - 1, item)

    def _on_record_removed(self, key: str):
        item = self._items.pop(key, None)
        if item is not None:
            self._list_layout.removeWidget(item)
            item.deleteLater()
        self.tracker.on_record_removed(key)

    def _on_header_changed(self, key: str):
        item = self._items.get(key)
        if item is not None:
            item.header.refresh(self.store.get_label(key), self.store.get_note_name(key),
                                self.store.is_folded(key))
        if self.floating.key == key:
            self.floating.refresh()

    def _on_fold_changed(self, key: str):
        self._on_header_changed(key)
        item = self._items.get(key)
        if item is not None:
            item.set_folded(self.store.is_folded(key))
        self.tracker.on_fold_changed(key)

    def _on_rendered(self, key: str, html: str):
        item = self._items.get(key)
        if item is not None:
            item.set_markup(html)

    # -- Qt overrides --

    def eventFilter(self, obj, event):
        if event.type() == QEvent.Type.Resize and obj in (
                self._container, self.scroll_area.viewport()):
            self.tracker.on_geometry_changed()
        return super().eventFilter(obj, event)

    def closeEvent(self, event):
        self.shutdown()
        super().closeEvent(event)

    def _show_status(self, text: str):
        self._status_label.setText(text)
        self._status_label.setVisible(True)
        QTimer.singleShot(4000, lambda: self._status_label.setVisible(False))
