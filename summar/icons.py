"""
Lucide SVG icons for record headers and the panel toolbar.

https://lucide.dev/icons/

Icons are rendered through QSvgRenderer onto a QPixmap sized for the
screen's device pixel ratio, then cached.

Usage
-----
    from summar.icons import IconManager, icon_for_label

    btn.setIcon(IconManager.get_icon("copy"))
    label.setPixmap(IconManager.get_pixmap(icon_for_label("pdf summary")))
"""

from __future__ import annotations

import re

from PyQt6.QtCore import QByteArray, QRectF, Qt
from PyQt6.QtGui import QIcon, QPainter, QPixmap
from PyQt6.QtSvg import QSvgRenderer
from PyQt6.QtWidgets import QApplication


_TINTS: dict[str, dict[bool, str]] = {
    # tint_name -> {is_dark: hex_colour}
    "default": {True: "#E1E1E6", False: "#333333"},
    "secondary": {True: "#8E8E93", False: "#636366"},
    "danger": {True: "#E57373", False: "#C62828"},
}


def _svg(body: str) -> str:
    return ('<svg xmlns="http://www.w3.org/2000/svg" width="24" height="24" '
            'viewBox="0 0 24 24" fill="none" stroke="currentColor" stroke-width="2" '
            f'stroke-linecap="round" stroke-linejoin="round">{body}</svg>')


_FILE_OUTLINE = ('<path d="M15 2H6a2 2 0 0 0-2 2v16a2 2 0 0 0 2 2h12a2 2 0 0 0 2-2V7Z"/>'
                 '<path d="M14 2v4a2 2 0 0 0 2 2h4"/>')
_CLIPBOARD = ('<rect width="8" height="4" x="8" y="2" rx="1" ry="1"/>'
              '<path d="M16 4h2a2 2 0 0 1 2 2v14a2 2 0 0 1-2 2H6a2 2 0 0 1-2-2V6'
              'a2 2 0 0 1 2-2h2"/>')

# Raw sources; "currentColor" is replaced with the tint at render time
_SVG_SOURCES: dict[str, str] = {
    # header buttons
    "copy": _svg('<rect width="14" height="14" x="8" y="8" rx="2" ry="2"/>'
                 '<path d="M4 16c-1.1 0-2-.9-2-2V4c0-1.1.9-2 2-2h10c1.1 0 2 .9 2 2"/>'),
    "chevron_down": _svg('<path d="m6 9 6 6 6-6"/>'),
    "chevron_up": _svg('<path d="m18 15-6-6-6 6"/>'),
    "reply": _svg('<polyline points="9 17 4 12 9 7"/>'
                  '<path d="M20 18v-2a4 4 0 0 0-4-4H4"/>'),
    "file_plus": _svg(_FILE_OUTLINE + '<path d="M9 15h6"/><path d="M12 18v-6"/>'),
    "trash": _svg('<path d="M3 6h18"/>'
                  '<path d="M19 6v14c0 1-1 2-2 2H7c-1 0-2-1-2-2V6"/>'
                  '<path d="M8 6V4c0-1 1-2 2-2h4c1 0 2 1 2 2v2"/>'),
    # toolbar
    "save": _svg('<path d="M15.2 3a2 2 0 0 1 1.4.6l3.8 3.8a2 2 0 0 1 .6 1.4V19'
                 'a2 2 0 0 1-2 2H5a2 2 0 0 1-2-2V5a2 2 0 0 1 2-2z"/>'
                 '<path d="M17 21v-7a1 1 0 0 0-1-1H8a1 1 0 0 0-1 1v7"/>'
                 '<path d="M7 3v4a1 1 0 0 0 1 1h7"/>'),
    "folder_open": _svg('<path d="m6 14 1.5-2.9A2 2 0 0 1 9.24 10H20a2 2 0 0 1 1.94 2.5'
                        'l-1.54 6a2 2 0 0 1-1.95 1.5H4a2 2 0 0 1-2-2V5a2 2 0 0 1 2-2h3.9'
                        'a2 2 0 0 1 1.69.9l.81 1.2a2 2 0 0 0 1.67.9H18a2 2 0 0 1 2 2v2"/>'),
    "chevrons_up": _svg('<path d="m17 11-5-5-5 5"/><path d="m17 18-5-5-5 5"/>'),
    "chevrons_down": _svg('<path d="m7 6 5 5 5-5"/><path d="m7 13 5 5 5-5"/>'),
    # label icons
    "tag": _svg('<path d="M12.586 2.586A2 2 0 0 0 11.172 2H4a2 2 0 0 0-2 2v7.172'
                'a2 2 0 0 0 .586 1.414l8.704 8.704a2.426 2.426 0 0 0 3.42 0l6.58-6.58'
                'a2.426 2.426 0 0 0 0-3.42z"/>'
                '<circle cx="7.5" cy="7.5" r=".5" fill="currentColor"/>'),
    "file": _svg(_FILE_OUTLINE),
    "file_text": _svg(_FILE_OUTLINE + '<path d="M10 9H8"/><path d="M16 13H8"/>'
                                      '<path d="M16 17H8"/>'),
    "audio_lines": _svg('<path d="M2 10v3"/><path d="M6 6v11"/><path d="M10 3v18"/>'
                        '<path d="M14 8v7"/><path d="M18 5v13"/><path d="M22 10v3"/>'),
    "image": _svg('<rect width="18" height="18" x="3" y="3" rx="2" ry="2"/>'
                  '<circle cx="9" cy="9" r="2"/>'
                  '<path d="m21 15-3.086-3.086a2 2 0 0 0-2.828 0L6 21"/>'),
    "globe": _svg('<circle cx="12" cy="12" r="10"/>'
                  '<path d="M12 2a14.5 14.5 0 0 0 0 20 14.5 14.5 0 0 0 0-20"/>'
                  '<path d="M2 12h20"/>'),
    "book": _svg('<path d="M4 19.5v-15A2.5 2.5 0 0 1 6.5 2H20v20H6.5a2.5 2.5 0 0 1 0-5H20"/>'),
    "hash": _svg('<line x1="4" x2="20" y1="9" y2="9"/><line x1="4" x2="20" y1="15" y2="15"/>'
                 '<line x1="10" x2="8" y1="3" y2="21"/><line x1="16" x2="14" y1="3" y2="21"/>'),
    "message_square": _svg('<path d="M21 15a2 2 0 0 1-2 2H7l-4 4V5a2 2 0 0 1 2-2h14'
                           'a2 2 0 0 1 2 2z"/>'),
    "clipboard_list": _svg(_CLIPBOARD + '<path d="M12 11h4"/><path d="M12 16h4"/>'
                                        '<path d="M8 11h.01"/><path d="M8 16h.01"/>'),
    "clipboard_check": _svg(_CLIPBOARD + '<path d="m9 14 2 2 4-4"/>'),
}

# First matching pattern wins; order matters ("pdf summary" is a file).
_LABEL_ICON_RULES: list[tuple[str, str]] = [
    (r"pdf|doc|file", "file_text"),
    (r"audio|voice|sound|mic|transcript", "audio_lines"),
    (r"image|img|pic|png|jpe?g", "image"),
    (r"web|url|link|https?", "globe"),
    (r"note|memo", "file"),
    (r"wiki|confluence", "book"),
    (r"slack", "hash"),
    (r"chat|composer", "message_square"),
    (r"summary", "clipboard_list"),
    (r"refinement", "clipboard_check"),
]


def icon_for_label(label: str) -> str:
    """Pick a header icon name from a record's label."""
    lowered = (label or "").lower()
    for pattern, name in _LABEL_ICON_RULES:
        if re.search(pattern, lowered):
            return name
    return "tag"


class IconManager:
    """Render Lucide SVG icons as Retina-ready QIcons.

    Rendered icons are cached by ``(name, is_dark, tint, size)``.
    """

    _cache: dict[tuple[str, bool, str, int], QIcon] = {}

    @classmethod
    def get_icon(cls, name: str, *, is_dark: bool = False,
                 tint: str = "default", size: int = 16) -> QIcon:
        key = (name, is_dark, tint, size)
        if key not in cls._cache:
            cls._cache[key] = QIcon(cls._render(name, is_dark, tint, size))
        return cls._cache[key]

    @classmethod
    def get_pixmap(cls, name: str, *, is_dark: bool = False,
                   tint: str = "default", size: int = 16) -> QPixmap:
        return cls._render(name, is_dark, tint, size)

    @classmethod
    def refresh(cls) -> None:
        cls._cache.clear()

    @classmethod
    def available_icons(cls) -> list[str]:
        return sorted(_SVG_SOURCES)

    @classmethod
    def _tinted_svg(cls, name: str, is_dark: bool, tint: str) -> str:
        svg = _SVG_SOURCES.get(name, _SVG_SOURCES["tag"])
        colour = _TINTS.get(tint, _TINTS["default"])[is_dark]
        return svg.replace("currentColor", colour)

    @classmethod
    def _render(cls, name: str, is_dark: bool, tint: str, size: int) -> QPixmap:
        svg_str = cls._tinted_svg(name, is_dark, tint)

        dpr = 1.0
        app = QApplication.instance()
        if app is not None:
            screen = app.primaryScreen()
            if screen is not None:
                dpr = screen.devicePixelRatio()

        physical = int(size * dpr)
        renderer = QSvgRenderer(QByteArray(svg_str.encode("utf-8")))
        renderer.setAspectRatioMode(Qt.AspectRatioMode.KeepAspectRatio)

        pixmap = QPixmap(physical, physical)
        pixmap.fill(Qt.GlobalColor.transparent)
        pixmap.setDevicePixelRatio(dpr)

        # Paint into the logical rect so the icon fills the pixmap
        painter = QPainter(pixmap)
        renderer.render(painter, QRectF(0, 0, size, size))
        painter.end()
        return pixmap
