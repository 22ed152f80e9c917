import re
import time
import unicodedata
from datetime import datetime
from typing import Optional, Union

from reporter.app.schemas.template_model import TemplateModel

_UNSAFE_FILE_CHARS = re.compile(r'[\\/?%*:|"<>]')
_NON_SLUG = re.compile(r"[^a-zA-Z0-9]+")
_NON_DIGIT = re.compile(r"[^0-9]")


def slugify(value: str, fallback: str = "report") -> str:
    """ASCII slug: accents dropped, runs of other characters become "-"."""
    decomposed = unicodedata.normalize("NFKD", value)
    ascii_only = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    slug = _NON_SLUG.sub("-", ascii_only).strip("-").lower()
    return slug or fallback


def sanitize_file_name(name: Optional[str]) -> str:
    """Replace path and shell metacharacters and force a .pdf extension."""
    safe = _UNSAFE_FILE_CHARS.sub("-", (name or "").strip())
    if not safe:
        safe = f"driver-report-{int(time.time() * 1000)}"
    if safe.lower().endswith(".pdf"):
        return safe
    return f"{safe}.pdf"


def default_file_name(
    model: TemplateModel,
    report_id: Union[int, str],
    now: Optional[datetime] = None,
) -> str:
    """``checklist-<driver slug>-<date digits>-<report id>.pdf``"""
    date_part = _NON_DIGIT.sub("", model.checklist_date)
    if not date_part:
        date_part = (now or datetime.now()).strftime("%Y%m%d")
    return f"checklist-{slugify(model.driver_name)}-{date_part}-{report_id}.pdf"
