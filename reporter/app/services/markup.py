"""
Markup compilation.

Turns a markup template plus a TemplateModel into an ordered, immutable
sequence of ContentSegments for the document renderer.

Pipeline:
    1. Sandboxed Jinja2 variable substitution (no escaping; template
       model values are plain text).
    2. Lexing: h1/h2/h3 and li elements become typed segments; br and
       block closers become line breaks; every other tag is stripped and
       a fixed set of HTML entities is decoded.
    3. Spacing normalization: a spacer between consecutive paragraphs and
       before a list that follows non-list content.

This is not an HTML renderer: there is no CSS, no tables and no images.
"""

import re
from typing import List, Sequence, Tuple

from jinja2 import TemplateError
from jinja2.sandbox import ImmutableSandboxedEnvironment

from reporter.app.core.errors import ReporterError
from reporter.app.schemas.segments import SPACER, ContentSegment, SegmentType
from reporter.app.schemas.template_model import TemplateModel


class MarkupCompilationError(ReporterError):
    """Raised when a markup template cannot be rendered."""


# Templates may be remote and untrusted: no private attributes, no mutating calls.
_ENV = ImmutableSandboxedEnvironment(
    autoescape=False,
    keep_trailing_newline=True,
)

_BLOCK_PATTERNS = (
    (re.compile(r"<h1\b[^>]*>(.*?)</h1>", re.IGNORECASE | re.DOTALL), "H1", True),
    (re.compile(r"<h2\b[^>]*>(.*?)</h2>", re.IGNORECASE | re.DOTALL), "H2", True),
    (re.compile(r"<h3\b[^>]*>(.*?)</h3>", re.IGNORECASE | re.DOTALL), "H3", True),
    (re.compile(r"<li\b[^>]*>(.*?)</li>", re.IGNORECASE | re.DOTALL), "LI", False),
)
_LINE_BREAK = re.compile(r"<br\s*/?\s*>", re.IGNORECASE)
_BLOCK_CLOSE = re.compile(r"</(p|div|section|header|footer)>", re.IGNORECASE)
_HEAD = re.compile(r"<(head|script|style)\b[^>]*>.*?</\1>", re.IGNORECASE | re.DOTALL)
_ANY_TAG = re.compile(r"<[^>]+>")
# Control characters cannot appear in markup, so markers survive tag stripping.
_OPEN = "\x02"
_CLOSE = "\x03"
_MARKER = re.compile(r"\x02([A-Z0-9]+)\x02(.*?)\x03", re.DOTALL)

_MARKER_TYPES = {
    "H1": SegmentType.HEADING1,
    "H2": SegmentType.HEADING2,
    "H3": SegmentType.HEADING3,
    "LI": SegmentType.LIST_ITEM,
}

_ENTITIES = (
    ("&nbsp;", " "),
    ("&lt;", "<"),
    ("&gt;", ">"),
    ("&quot;", '"'),
    ("&#39;", "'"),
    ("&amp;", "&"),
)


def render_markup(template: str, model: TemplateModel) -> str:
    try:
        return _ENV.from_string(template).render(model.render_context())
    except TemplateError as exc:
        raise MarkupCompilationError(f"Template rendering failed: {exc}") from exc


def decode_entities(text: str) -> str:
    # &amp; last, so "&amp;lt;" decodes to the literal "&lt;".
    for entity, char in _ENTITIES:
        text = text.replace(entity, char)
    return text


def _collapse(text: str) -> str:
    return " ".join(text.split())


def _paragraphs(text: str) -> List[ContentSegment]:
    return [
        ContentSegment(type=SegmentType.PARAGRAPH, text=_collapse(line))
        for line in text.splitlines()
        if line.strip()
    ]


def markup_to_segments(markup: str) -> List[ContentSegment]:
    """Lex substituted markup into raw segments, in document order."""
    text = _HEAD.sub("", markup.replace(_OPEN, "").replace(_CLOSE, ""))
    for pattern, marker, block in _BLOCK_PATTERNS:
        suffix = "\n" if block else ""
        text = pattern.sub(
            lambda m, marker=marker, suffix=suffix: (
                f"\n{_OPEN}{marker}{_OPEN}{_ANY_TAG.sub('', m.group(1))}{_CLOSE}{suffix}"
            ),
            text,
        )
    text = _LINE_BREAK.sub("\n", text)
    text = _BLOCK_CLOSE.sub("\n", text)
    text = _ANY_TAG.sub("", text)

    segments: List[ContentSegment] = []
    last = 0
    for match in _MARKER.finditer(text):
        segments.extend(_paragraphs(decode_entities(text[last:match.start()])))
        last = match.end()
        content = _collapse(decode_entities(match.group(2)))
        if not content:
            continue
        segments.append(
            ContentSegment(
                type=_MARKER_TYPES.get(match.group(1), SegmentType.PARAGRAPH),
                text=content,
            )
        )
    segments.extend(_paragraphs(decode_entities(text[last:])))
    return segments


def normalize_segments(segments: Sequence[ContentSegment]) -> Tuple[ContentSegment, ...]:
    """
    Insert spacers so the renderer never needs lookahead.

    - paragraph followed by paragraph: spacer between them
    - non-list segment followed by a list item: spacer before the list
    """
    normalized: List[ContentSegment] = []
    for segment in segments:
        if segment.type is SegmentType.PARAGRAPH and not segment.text:
            continue
        previous = normalized[-1] if normalized else None
        if previous is not None:
            if (
                segment.type is SegmentType.PARAGRAPH
                and previous.type is SegmentType.PARAGRAPH
            ):
                normalized.append(SPACER)
            elif (
                segment.type is SegmentType.LIST_ITEM
                and previous.type is not SegmentType.LIST_ITEM
            ):
                normalized.append(SPACER)
        normalized.append(segment)
    return tuple(normalized)


def compile_markup(template: str, model: TemplateModel) -> Tuple[ContentSegment, ...]:
    return normalize_segments(markup_to_segments(render_markup(template, model)))
