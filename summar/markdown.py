"""
Lightweight markdown -> HTML conversion for record bodies.

This is the render function the scheduler calls once per quiet period.  It
is pure: the same text always yields the same markup and nothing on screen
changes until the caller applies the result.
"""
from __future__ import annotations

import re


def md_to_html(md: str) -> str:
    """Convert a markdown string to HTML suitable for QTextBrowser.

    Handles headings, bold, italic, inline code, fenced code blocks,
    block quotes, unordered and ordered lists, and rules.  Not a full
    CommonMark parser, but good enough for summaries and chat answers.
    An unterminated code fence (common mid-stream) runs to the end.
    """
    html_parts: list[str] = []
    lines = md.split("\n")
    i = 0
    in_list = False
    list_type = ""

    def close_list():
        nonlocal in_list
        if in_list:
            html_parts.append(f"</{list_type}>")
            in_list = False

    while i < len(lines):
        line = lines[i]
        stripped = line.strip()

        # Fenced code block
        if stripped.startswith("```"):
            code_lines: list[str] = []
            i += 1
            while i < len(lines) and not lines[i].strip().startswith("```"):
                code_lines.append(lines[i])
                i += 1
            i += 1  # skip closing ```
            close_list()
            escaped = _escape_html("\n".join(code_lines))
            html_parts.append(
                f'<pre style="background-color: rgba(128,128,128,0.12); '
                f'padding: 6px; font-family: Menlo, monospace; '
                f'white-space: pre-wrap;">{escaped}</pre>'
            )
            continue

        if in_list and not _is_list_item(line):
            close_list()

        if not stripped:
            i += 1
            continue

        heading = re.match(r"^(#{1,6})\s+(.*)$", stripped)
        if heading:
            level = len(heading.group(1))
            html_parts.append(f"<h{level}>{_inline(heading.group(2).strip())}</h{level}>")
        elif re.match(r"^(---|\*\*\*|___)\s*$", stripped):
            html_parts.append("<hr>")
        elif re.match(r"^[-*+]\s", stripped):
            if not in_list or list_type != "ul":
                close_list()
                html_parts.append("<ul>")
                in_list, list_type = True, "ul"
            content = re.sub(r"^[-*+]\s", "", stripped)
            html_parts.append(f"<li>{_inline(content)}</li>")
        elif re.match(r"^\d+\.\s", stripped):
            if not in_list or list_type != "ol":
                close_list()
                html_parts.append("<ol>")
                in_list, list_type = True, "ol"
            content = re.sub(r"^\d+\.\s", "", stripped)
            html_parts.append(f"<li>{_inline(content)}</li>")
        elif stripped.startswith(">"):
            quoted = stripped.lstrip("> ").strip()
            html_parts.append(f"<blockquote>{_inline(quoted)}</blockquote>")
        else:
            html_parts.append(f"<p>{_inline(stripped)}</p>")

        i += 1

    close_list()
    return cleanup_markdown_output("\n".join(html_parts))


def cleanup_markdown_output(html: str) -> str:
    """Tighten rendered markup so bodies don't carry stray blank space."""
    html = re.sub(r"<br\s*/?>\s*<br\s*/?>", "<br>", html, flags=re.I)
    html = re.sub(r"</p>\s*<p>", "</p><p>", html, flags=re.I)
    html = re.sub(r"<p>\s*</p>", "", html, flags=re.I)
    html = re.sub(r">\s*\n\s*<", "><", html)
    return html.strip()


def _is_list_item(line: str) -> bool:
    s = line.strip()
    return bool(re.match(r"^[-*+]\s", s) or re.match(r"^\d+\.\s", s))


def _escape_html(text: str) -> str:
    return (text
            .replace("&", "&amp;")
            .replace("<", "&lt;")
            .replace(">", "&gt;"))


def _inline(text: str) -> str:
    """Apply inline markdown formatting: bold, italic, inline code, links."""
    text = _escape_html(text)
    text = re.sub(r"`([^`]+)`",
                  r'<code style="font-family: Menlo, monospace;">\1</code>',
                  text)
    text = re.sub(r"\*\*\*(.+?)\*\*\*", r"<b><i>\1</i></b>", text)
    text = re.sub(r"\*\*(.+?)\*\*", r"<b>\1</b>", text)
    text = re.sub(r"\*(.+?)\*", r"<i>\1</i>", text)
    text = re.sub(r"\[([^\]]+)\]\(([^)]+)\)", r'<a href="\2">\1</a>', text)
    return text
