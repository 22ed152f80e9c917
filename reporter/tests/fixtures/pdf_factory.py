import io
from typing import Dict, Iterable, Optional

import pikepdf
from pikepdf import Array, Dictionary, Name, String
from pypdf import PdfReader


# ------------------------------------------------------------------
# Plain documents
# ------------------------------------------------------------------

def blank_pdf(pages: int = 1) -> bytes:
    """A document with ``pages`` empty A4 pages and no form."""
    buffer = io.BytesIO()
    with pikepdf.new() as pdf:
        for _ in range(pages):
            pdf.add_blank_page(page_size=(595, 842))
        pdf.save(buffer)
    return buffer.getvalue()


# ------------------------------------------------------------------
# AcroForm documents
#
# One page with a widget per field, laid out top to bottom. Field
# types default to text (/Tx); pass {"name": "/Btn"} style overrides
# to mix in checkboxes or choice fields.
# ------------------------------------------------------------------

def form_pdf(
    field_names: Iterable[str],
    field_types: Optional[Dict[str, str]] = None,
) -> bytes:
    field_types = field_types or {}
    buffer = io.BytesIO()

    with pikepdf.new() as pdf:
        pdf.add_blank_page(page_size=(595, 842))
        page = pdf.pages[0]

        fields = Array()
        annots = Array()
        y = 780
        for name in field_names:
            widget = pdf.make_indirect(
                Dictionary(
                    Type=Name("/Annot"),
                    Subtype=Name("/Widget"),
                    FT=Name(field_types.get(name, "/Tx")),
                    T=String(name),
                    Rect=Array([48, y, 300, y + 20]),
                    P=page.obj,
                )
            )
            fields.append(widget)
            annots.append(widget)
            y -= 30

        page.obj.Annots = annots
        pdf.Root.AcroForm = Dictionary(Fields=fields)
        pdf.save(buffer)

    return buffer.getvalue()


def nested_form_pdf(parent: str, children: Iterable[str]) -> bytes:
    """Hierarchical field tree: ``parent.child`` terminal names."""
    buffer = io.BytesIO()

    with pikepdf.new() as pdf:
        pdf.add_blank_page(page_size=(595, 842))
        page = pdf.pages[0]

        parent_field = pdf.make_indirect(Dictionary(T=String(parent), FT=Name("/Tx")))
        kids = Array()
        y = 780
        for child in children:
            kid = pdf.make_indirect(
                Dictionary(
                    Type=Name("/Annot"),
                    Subtype=Name("/Widget"),
                    T=String(child),
                    Parent=parent_field,
                    Rect=Array([48, y, 300, y + 20]),
                    P=page.obj,
                )
            )
            kids.append(kid)
            y -= 30
        parent_field.Kids = kids

        page.obj.Annots = kids
        pdf.Root.AcroForm = Dictionary(Fields=Array([parent_field]))
        pdf.save(buffer)

    return buffer.getvalue()


# ------------------------------------------------------------------
# Inspection helpers
# ------------------------------------------------------------------

def page_count(data: bytes) -> int:
    with pikepdf.open(io.BytesIO(data)) as pdf:
        return len(pdf.pages)


def field_values(data: bytes) -> Dict[str, str]:
    """Terminal field name -> /V for every field that has a value."""
    reader = PdfReader(io.BytesIO(data))
    fields = reader.get_fields() or {}
    return {
        name: str(field.get("/V"))
        for name, field in fields.items()
        if field.get("/V") is not None
    }


def need_appearances(data: bytes) -> bool:
    with pikepdf.open(io.BytesIO(data)) as pdf:
        acroform = pdf.Root.get("/AcroForm")
        return bool(acroform is not None and acroform.get("/NeedAppearances", False))


def extract_text(data: bytes) -> str:
    reader = PdfReader(io.BytesIO(data))
    return "\n".join(page.extract_text() or "" for page in reader.pages)
