"""
Document rendering.

Paints laid-out pages with reportlab and, when a prebuilt document is
involved, merges the result into it with pikepdf.

Two entry points:

- render_segments: content segments to a new PDF, or appended to an
  existing one.
- render_form_template: fill the AcroForm of a prebuilt PDF; when no
  field matches, append the fallback segments to the same document.

Any failure aborts the whole render with RenderError. No partial
document is ever returned.
"""

import io
import logging
from typing import List, Optional, Sequence

import pikepdf
from reportlab.pdfgen import canvas

from reporter.app.core.errors import ReporterError
from reporter.app.schemas.segments import ContentSegment
from reporter.app.schemas.template_model import TemplateModel
from reporter.app.services.forms import FormFieldFiller, form_values
from reporter.app.services.layout import PAGE_SIZE, PageLayout, layout_segments

logger = logging.getLogger("reporter.pdf_render")


class RenderError(ReporterError):
    """Raised when drawing or PDF assembly fails."""


# ------------------------------------------------------------------
# Internal helpers
# ------------------------------------------------------------------

def _paint(pages: List[PageLayout]) -> bytes:
    buffer = io.BytesIO()
    pdf = canvas.Canvas(buffer, pagesize=PAGE_SIZE, pageCompression=1)
    pdf.setTitle("Checklist report")

    for page in pages:
        for op in page.ops:
            pdf.setFont(op.font, op.size)
            pdf.drawString(op.x, op.y, op.text)
        pdf.showPage()

    if not pages:
        # A PDF needs at least one page.
        pdf.showPage()

    pdf.save()
    return buffer.getvalue()


def _append_pages(target: pikepdf.Pdf, segments: Sequence[ContentSegment]) -> int:
    pages = layout_segments(segments)
    if not pages:
        return 0
    with pikepdf.open(io.BytesIO(_paint(pages))) as rendered:
        target.pages.extend(rendered.pages)
    return len(pages)


def _save(pdf: pikepdf.Pdf) -> bytes:
    buffer = io.BytesIO()
    pdf.save(buffer)
    return buffer.getvalue()


# ------------------------------------------------------------------
# Public API
# ------------------------------------------------------------------

def render_segments(
    segments: Sequence[ContentSegment],
    existing_document: Optional[bytes] = None,
) -> bytes:
    """
    Render segments to PDF bytes.

    With ``existing_document`` the rendered pages are appended after the
    document's own pages.
    """
    try:
        if existing_document is None:
            data = _paint(layout_segments(segments))
        else:
            with pikepdf.open(io.BytesIO(existing_document)) as pdf:
                _append_pages(pdf, segments)
                data = _save(pdf)
    except Exception as exc:
        raise RenderError(f"PDF rendering failed: {exc}") from exc

    logger.info("pdf_rendered", extra={"segment_count": len(segments), "size": len(data)})
    return data


def render_form_template(
    template_bytes: bytes,
    model: TemplateModel,
    fallback_segments: Sequence[ContentSegment],
    filler: Optional[FormFieldFiller] = None,
) -> bytes:
    """
    Populate a prebuilt PDF form from the template model.

    Form filling is best effort: when it fails or matches no field, the
    fallback segments are appended to the template instead.
    """
    filler = filler or FormFieldFiller()

    try:
        with pikepdf.open(io.BytesIO(template_bytes)) as pdf:
            try:
                filled = filler.fill(pdf, form_values(model))
            except Exception as exc:
                logger.warning("form_fill_failed", extra={"error": str(exc)})
                filled = False

            if not filled:
                appended = _append_pages(pdf, fallback_segments)
                logger.info("form_fallback_appended", extra={"page_count": appended})

            data = _save(pdf)
    except Exception as exc:
        raise RenderError(f"PDF template rendering failed: {exc}") from exc

    return data
