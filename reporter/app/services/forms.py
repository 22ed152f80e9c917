"""
AcroForm population for prebuilt PDF templates.

Field matching runs in two phases:

1. Alias table: each logical value has a fixed list of field names it
   may be published under. The first alias present and writable wins.
2. Normalized substring: only when phase 1 set nothing. Field names and
   logical keys are lowercased and stripped to [a-z0-9]; a field takes
   the first logical value whose key is contained in its name.

``FormFieldFiller.fill`` reports whether anything was written instead of
raising, so callers can pick the fallback path deterministically.
"""

import logging
import re
from dataclasses import dataclass
from typing import Dict, Iterator, List, Mapping, Optional, Sequence, Tuple

import pikepdf
from pikepdf import String

from reporter.app.schemas.template_model import TemplateModel

logger = logging.getLogger("reporter.forms")


FIELD_ALIASES: Dict[str, Tuple[str, ...]] = {
    "driver_name": ("driver", "driver_name", "driverName", "kierowca", "driver-fullname"),
    "vehicle_registration": (
        "vehicle",
        "vehicle_registration",
        "vehicleNumber",
        "pojazd",
        "vehicle-reg",
    ),
    "vehicle_description": ("vehicle_description", "vehicle_model", "model"),
    "checklist_date": ("date", "checklist_date", "data", "inspection_date"),
    "report_number": ("report_number", "report", "numer", "document_no"),
    "depot_name": ("depot", "depot_name"),
    "destination_name": ("destination", "destination_name"),
    "shift_window": ("shift", "shift_window"),
    "start_odometer": ("odometer", "start_odometer", "mileage"),
    "fuel_level": ("fuel", "fuel_level"),
    "notes": ("notes", "uwagi", "comments"),
    "items": ("items", "checklist", "lista", "checklist_items"),
    "generated_at": ("generated_at", "generatedAt", "data_generacji"),
}

_NON_ALNUM = re.compile(r"[^a-z0-9]")


def normalize_name(name: str) -> str:
    return _NON_ALNUM.sub("", name.lower())


def form_values(model: TemplateModel) -> Dict[str, str]:
    """Logical form values for a template model, in matching priority order."""
    return {
        "driver_name": model.driver_name,
        "vehicle_registration": model.vehicle_registration,
        "vehicle_description": model.vehicle_description,
        "checklist_date": model.checklist_date,
        "report_number": model.report_number,
        "depot_name": model.depot_name,
        "destination_name": model.destination_name,
        "shift_window": model.shift_window,
        "start_odometer": model.start_odometer,
        "fuel_level": model.fuel_level,
        "notes": model.notes,
        "items": "\n".join(f"{item.label}: {item.value}" for item in model.items),
        "generated_at": model.generated_at,
    }


@dataclass
class FormField:
    """A terminal AcroForm field and its fully qualified name."""

    name: str
    obj: pikepdf.Dictionary
    field_type: Optional[str]

    def set_text(self, value: str) -> bool:
        if self.field_type != "/Tx":
            return False
        self.obj.V = String(value)
        return True

    def set_value(self, value: str) -> bool:
        if self.field_type != "/Ch":
            return False
        self.obj.V = String(value)
        return True

    def assign(self, value: str) -> bool:
        if not value:
            return False
        return self.set_text(value) or self.set_value(value)


def iter_fields(pdf: pikepdf.Pdf) -> Iterator[FormField]:
    """Walk the AcroForm field tree, yielding terminal fields."""
    acroform = pdf.Root.get("/AcroForm")
    if acroform is None:
        return
    fields = acroform.get("/Fields")
    if fields is None:
        return

    def walk(node, parent_name: str, inherited_type: Optional[str]):
        partial = str(node.get("/T", ""))
        name = f"{parent_name}.{partial}" if parent_name and partial else (partial or parent_name)
        field_type = node.get("/FT")
        field_type = str(field_type) if field_type is not None else inherited_type

        kids = node.get("/Kids")
        named_kids = [kid for kid in kids if "/T" in kid] if kids is not None else []
        if named_kids:
            for kid in named_kids:
                yield from walk(kid, name, field_type)
        elif name:
            yield FormField(name=name, obj=node, field_type=field_type)

    for node in fields:
        yield from walk(node, "", None)


class FormFieldFiller:
    """Two-phase field matching strategy."""

    def __init__(self, aliases: Mapping[str, Sequence[str]] = FIELD_ALIASES) -> None:
        self.aliases = aliases

    def fill_by_alias(self, fields: Mapping[str, FormField], values: Mapping[str, str]) -> List[str]:
        filled = []
        for key, aliases in self.aliases.items():
            value = values.get(key)
            if not value:
                continue
            for alias in aliases:
                field = fields.get(alias)
                if field is not None and field.assign(value):
                    filled.append(field.name)
                    break
        return filled

    def fill_by_substring(self, fields: Mapping[str, FormField], values: Mapping[str, str]) -> List[str]:
        filled = []
        for name, field in fields.items():
            normalized = normalize_name(name)
            for key, value in values.items():
                if not value:
                    continue
                if normalize_name(key) in normalized and field.assign(value):
                    filled.append(name)
                    break
        return filled

    def fill(self, pdf: pikepdf.Pdf, values: Mapping[str, str]) -> bool:
        """Write ``values`` into the form fields of ``pdf``. True when any field was set."""
        fields = {field.name: field for field in iter_fields(pdf)}
        if not fields:
            return False

        filled = self.fill_by_alias(fields, values)
        strategy = "alias"
        if not filled:
            filled = self.fill_by_substring(fields, values)
            strategy = "substring"

        if not filled:
            logger.info("form_fields_unmatched", extra={"field_count": len(fields)})
            return False

        # Viewers regenerate widget appearances from /V.
        pdf.Root.AcroForm.NeedAppearances = True
        logger.info(
            "form_fields_filled",
            extra={"strategy": strategy, "fields": filled},
        )
        return True
