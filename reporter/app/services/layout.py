"""
Page layout for content segments.

Pure geometry: segments go in, positioned text runs grouped by page come
out. Nothing here touches a PDF; drawing happens in pdf_render.

Coordinates are PDF user space (origin bottom-left, points). A vertical
cursor starts at the top margin. Before each line is placed the
remaining space is checked against the line height and a new page is
started when it does not fit, so every drawn baseline stays within the
page margins.
"""

import unicodedata
from dataclasses import dataclass, field
from typing import Dict, List, Sequence

from reportlab.pdfbase.pdfmetrics import stringWidth

from reporter.app.schemas.segments import ContentSegment, SegmentType


PAGE_WIDTH = 595.28
PAGE_HEIGHT = 841.89
PAGE_SIZE = (PAGE_WIDTH, PAGE_HEIGHT)
MARGIN = 48.0
CONTENT_WIDTH = PAGE_WIDTH - 2 * MARGIN

REGULAR_FONT = "Helvetica"
BOLD_FONT = "Helvetica-Bold"

BODY_SIZE = 12
LINE_GAP = 4
PARAGRAPH_GAP = 4
LIST_ITEM_GAP = 2
SPACER_HEIGHT = 8

BULLET = "•"

# Letters without a Unicode decomposition to a base letter.
_TRANSLITERATIONS = str.maketrans({"ł": "l", "Ł": "L", "đ": "d", "Đ": "D", "ħ": "h", "Ħ": "H"})
BULLET_INDENT = MARGIN + 8
LIST_TEXT_INDENT = MARGIN + 20


@dataclass(frozen=True)
class HeadingStyle:
    size: int
    required_space: int
    advance: int


HEADING_STYLES: Dict[SegmentType, HeadingStyle] = {
    SegmentType.HEADING1: HeadingStyle(size=20, required_space=26, advance=28),
    SegmentType.HEADING2: HeadingStyle(size=16, required_space=20, advance=22),
    SegmentType.HEADING3: HeadingStyle(size=14, required_space=18, advance=20),
}


@dataclass(frozen=True)
class DrawOp:
    """A single text run at a baseline position."""

    text: str
    x: float
    y: float
    font: str
    size: int


@dataclass
class PageLayout:
    ops: List[DrawOp] = field(default_factory=list)


def printable(text: str) -> str:
    """
    Restrict ``text`` to what the standard PDF fonts can encode.

    Accented letters outside WinAnsi are reduced to their base letter;
    anything else becomes "?".
    """
    chars = []
    for char in text.translate(_TRANSLITERATIONS):
        try:
            char.encode("cp1252")
        except UnicodeEncodeError:
            base = unicodedata.normalize("NFKD", char)[:1]
            try:
                base.encode("cp1252")
            except UnicodeEncodeError:
                base = "?"
            char = base if base.strip() else "?"
        chars.append(char)
    return "".join(chars)


def text_width(text: str, font: str, size: float) -> float:
    return stringWidth(text, font, size)


def wrap_text(text: str, font: str, size: float, max_width: float) -> List[str]:
    """
    Greedily pack words into lines no wider than ``max_width``.

    A word that is wider than ``max_width`` on its own gets a line to
    itself and is never split. Always returns at least one line.
    """
    lines: List[str] = []
    current = ""
    for word in text.split():
        candidate = f"{current} {word}" if current else word
        if text_width(candidate, font, size) <= max_width:
            current = candidate
        elif current:
            lines.append(current)
            if text_width(word, font, size) <= max_width:
                current = word
            else:
                lines.append(word)
                current = ""
        else:
            lines.append(word)
    if current:
        lines.append(current)
    return lines or [""]


class _Cursor:
    def __init__(self) -> None:
        self.pages: List[PageLayout] = []
        self.y = 0.0
        self.new_page()

    def new_page(self) -> None:
        self.pages.append(PageLayout())
        self.y = PAGE_HEIGHT - MARGIN

    def ensure_space(self, height: float) -> None:
        if self.y - height < MARGIN:
            self.new_page()

    def draw(self, text: str, x: float, font: str, size: int) -> None:
        self.pages[-1].ops.append(DrawOp(text=text, x=x, y=self.y, font=font, size=size))

    def draw_lines(self, lines: Sequence[str], x: float, font: str, size: int) -> None:
        for line in lines:
            self.ensure_space(size + LINE_GAP)
            self.draw(line, x, font, size)
            self.y -= size + LINE_GAP


def layout_segments(segments: Sequence[ContentSegment]) -> List[PageLayout]:
    """Paginate segments. An empty sequence yields no pages."""
    if not segments:
        return []

    cursor = _Cursor()

    for segment in segments:
        text = printable(segment.text)

        if segment.type.is_heading:
            style = HEADING_STYLES[segment.type]
            for line in wrap_text(text, BOLD_FONT, style.size, CONTENT_WIDTH):
                cursor.ensure_space(style.required_space)
                cursor.draw(line, MARGIN, BOLD_FONT, style.size)
                cursor.y -= style.advance

        elif segment.type is SegmentType.LIST_ITEM:
            max_width = PAGE_WIDTH - LIST_TEXT_INDENT - MARGIN
            lines = wrap_text(text, REGULAR_FONT, BODY_SIZE, max_width)
            cursor.ensure_space(BODY_SIZE + LINE_GAP)
            cursor.draw(BULLET, BULLET_INDENT, REGULAR_FONT, BODY_SIZE)
            cursor.draw(lines[0], LIST_TEXT_INDENT, REGULAR_FONT, BODY_SIZE)
            cursor.y -= BODY_SIZE + LINE_GAP
            cursor.draw_lines(lines[1:], LIST_TEXT_INDENT, REGULAR_FONT, BODY_SIZE)
            cursor.y -= LIST_ITEM_GAP

        elif segment.type is SegmentType.SPACER:
            cursor.y -= SPACER_HEIGHT

        else:
            lines = wrap_text(text, REGULAR_FONT, BODY_SIZE, CONTENT_WIDTH)
            cursor.draw_lines(lines, MARGIN, REGULAR_FONT, BODY_SIZE)
            cursor.y -= PARAGRAPH_GAP

    return cursor.pages
