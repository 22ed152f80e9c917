"""
Field normalization for checklist report records.

Report rows arrive from the data store loosely typed: checklist payloads
may be nested objects, arrays, or JSON documents stored as strings at any
depth, and the same fact may live under several keys depending on which
client version wrote the row. This module turns a stored report plus
optional per-call overrides into a strictly typed TemplateModel.

Resolution rules:
- Each target field consults an ordered list of candidate paths.
  Overrides come first, then the stored report; within each, specific
  nested paths precede generic ones.
- The first usable candidate wins. Unusable candidates (blank strings,
  unparseable dates, empty item lists) are skipped, never raised.
- Every string field has a fixed fallback, so the model is always
  complete.

This module performs no I/O and is deterministic for identical inputs
(the generation timestamp is injected by the caller).
"""

import json
import math
from datetime import date, datetime, timezone
from typing import Any, Iterable, List, Mapping, Optional, Sequence

from pydantic import TypeAdapter, ValidationError

from reporter.app.schemas.template_model import (
    ChecklistItem,
    ChecklistStatus,
    TemplateModel,
)


DATE_FORMAT = "%d.%m.%Y"
TIMESTAMP_FORMAT = "%d.%m.%Y %H:%M"

PLACEHOLDER = "-"
UNKNOWN_DRIVER = "Unknown driver"
NO_DATA = "No data"
NO_NOTES = "No additional notes."
NOT_RECORDED = "Not recorded"

_OK_WORDS = frozenset({
    "ok", "yes", "y", "true", "pass", "passed", "good", "done", "checked",
    "tak", "sprawny",
})
_ATTENTION_WORDS = frozenset({
    "no", "n", "false", "fail", "failed", "attention", "defect", "issue",
    "problem", "nie", "usterka",
})
_NOT_APPLICABLE_WORDS = frozenset({
    "n/a", "na", "not applicable", "not_applicable", "nd", "-",
})

_DATE_STRING_FORMATS = ("%d.%m.%Y", "%Y/%m/%d", "%d/%m/%Y")
_DATETIME = TypeAdapter(datetime)


# ---------------------------------------------------------------------------
# Tolerant JSON handling
# ---------------------------------------------------------------------------


def parse_maybe_json(value: Any) -> Any:
    """
    Speculatively decode strings that look like JSON objects or arrays.

    Anything else, including strings that fail to parse, is returned
    unchanged.
    """
    if not isinstance(value, str):
        return value
    trimmed = value.strip()
    if (trimmed.startswith("{") and trimmed.endswith("}")) or (
        trimmed.startswith("[") and trimmed.endswith("]")
    ):
        try:
            return json.loads(trimmed)
        except ValueError:
            return value
    return value


def normalize_record(value: Any) -> Any:
    """
    Recursively decode JSON-encoded strings inside a record.

    Decoded values are normalized again, so documents that were encoded
    several times over collapse to plain structures. Applying the
    function to its own output is a no-op.
    """
    value = parse_maybe_json(value)
    if isinstance(value, Mapping):
        return {str(key): normalize_record(entry) for key, entry in value.items()}
    if isinstance(value, (list, tuple)):
        return [normalize_record(entry) for entry in value]
    return value


def dig(record: Any, *path: str) -> Any:
    """Follow ``path`` through nested mappings; None when any hop is missing."""
    current = record
    for key in path:
        if not isinstance(current, Mapping):
            return None
        current = current.get(key)
    return current


# ---------------------------------------------------------------------------
# Candidate pickers
# ---------------------------------------------------------------------------


def _is_number(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return not (isinstance(value, float) and not math.isfinite(value))


def _number_text(value) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def pick_string(candidates: Iterable[Any], fallback: str) -> str:
    """
    Return the first non-blank string candidate, trimmed.

    Numbers are a secondary preference and are only used when no
    candidate is a usable string.
    """
    candidates = list(candidates)
    for value in candidates:
        if isinstance(value, str) and value.strip():
            return value.strip()
    for value in candidates:
        if _is_number(value):
            return _number_text(value)
    return fallback


def _parse_iso(text: str) -> Optional[datetime]:
    """
    ISO-8601 date or timestamp. Fractions of any length are accepted,
    as PostgREST trims trailing zeros.
    """
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        pass
    # Only ISO-shaped text; pydantic would read bare digits as epoch seconds.
    if not (text[:4].isdigit() and text[4:5] == "-"):
        return None
    try:
        return _DATETIME.validate_python(text)
    except ValidationError:
        return None


def _parse_date(value: Any) -> Optional[date]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if _is_number(value):
        try:
            return datetime.fromtimestamp(value / 1000, tz=timezone.utc).date()
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        parsed = _parse_iso(text)
        if parsed is not None:
            return parsed.date()
        for fmt in _DATE_STRING_FORMATS:
            try:
                return datetime.strptime(text, fmt).date()
            except ValueError:
                continue
    return None


def pick_date(candidates: Iterable[Any]) -> Optional[str]:
    """Format the first parseable date candidate, or return None."""
    for value in candidates:
        parsed = _parse_date(value)
        if parsed is not None:
            return parsed.strftime(DATE_FORMAT)
    return None


def _format_time(value: Any) -> Optional[str]:
    if isinstance(value, datetime):
        return value.strftime("%H:%M")
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    if len(text) >= 5 and text[2] == ":" and text[:2].isdigit() and text[3:5].isdigit():
        return text[:5]
    parsed = _parse_iso(text)
    return parsed.strftime("%H:%M") if parsed is not None else None


def pick_shift_window(
    explicit: Sequence[Any],
    starts: Sequence[Any],
    ends: Sequence[Any],
) -> str:
    window = pick_string(explicit, "")
    if window:
        return window
    start = next((t for t in map(_format_time, starts) if t), None)
    end = next((t for t in map(_format_time, ends) if t), None)
    if start and end:
        return f"{start} - {end}"
    if start:
        return f"from {start}"
    if end:
        return f"until {end}"
    return PLACEHOLDER


def _pick_number(candidates: Iterable[Any]) -> Optional[float]:
    for value in candidates:
        if _is_number(value):
            return float(value)
        if isinstance(value, str) and value.strip():
            try:
                number = float(value.strip().replace(",", "."))
            except ValueError:
                continue
            if math.isfinite(number):
                return number
    return None


def format_odometer(candidates: Iterable[Any]) -> str:
    number = _pick_number(candidates)
    if number is None:
        return PLACEHOLDER
    return f"{round(number):,} km".replace(",", " ")


def format_fuel_level(candidates: Iterable[Any]) -> str:
    number = _pick_number(candidates)
    if number is None:
        return PLACEHOLDER
    return f"{round(number)}%"


# ---------------------------------------------------------------------------
# Checklist items
# ---------------------------------------------------------------------------


def normalize_checklist_value(value: Any) -> ChecklistStatus:
    """
    Map a raw checklist answer onto the tri-state status.

    ``True`` is OK and ``False`` is ATTENTION. Missing values and
    strings outside the recognized vocabulary are NOT_APPLICABLE.
    """
    if isinstance(value, bool):
        return ChecklistStatus.OK if value else ChecklistStatus.ATTENTION
    if isinstance(value, ChecklistStatus):
        return value
    if isinstance(value, str):
        word = value.strip().lower()
        if word in _OK_WORDS:
            return ChecklistStatus.OK
        if word in _ATTENTION_WORDS:
            return ChecklistStatus.ATTENTION
        if word in _NOT_APPLICABLE_WORDS:
            return ChecklistStatus.NOT_APPLICABLE
    return ChecklistStatus.NOT_APPLICABLE


def _display_value(value: Any) -> str:
    if isinstance(value, bool):
        return normalize_checklist_value(value).label
    if _is_number(value):
        return _number_text(value)
    if isinstance(value, str) and value.strip():
        return value.strip()
    if value is None or isinstance(value, str):
        return NOT_RECORDED
    return str(value)


def _item_from_mapping(entry: Mapping, position: int) -> ChecklistItem:
    label = pick_string(
        [entry.get("label"), entry.get("name"), entry.get("title"), entry.get("question")],
        f"Item {position}",
    )
    raw = None
    for key in ("value", "answer", "status", "result"):
        if entry.get(key) is not None:
            raw = entry[key]
            break
    if raw is None and entry.get("checked") is not None:
        raw = bool(entry["checked"])
    return ChecklistItem(
        label=label,
        value=_display_value(raw),
        status=normalize_checklist_value(raw),
    )


def normalize_items(source: Any) -> List[ChecklistItem]:
    """
    Extract checklist items from one candidate source.

    Arrays may hold plain strings (positional label, the string is the
    answer) or objects. Objects are flattened key -> value, skipping
    nested objects and arrays.
    """
    if not source:
        return []

    items: List[ChecklistItem] = []

    if isinstance(source, (list, tuple)):
        for entry in source:
            if not entry:
                continue
            position = len(items) + 1
            if isinstance(entry, str):
                if not entry.strip():
                    continue
                items.append(
                    ChecklistItem(
                        label=f"Item {position}",
                        value=entry.strip(),
                        status=normalize_checklist_value(entry),
                    )
                )
            elif isinstance(entry, Mapping):
                items.append(_item_from_mapping(entry, position))
        return items

    if isinstance(source, Mapping):
        for key, value in source.items():
            if value is None or isinstance(value, (Mapping, list, tuple)):
                continue
            label = str(key).strip()
            if not label:
                continue
            items.append(
                ChecklistItem(
                    label=label,
                    value=_display_value(value),
                    status=normalize_checklist_value(value),
                )
            )
        return items

    return []


def choose_items(sources: Iterable[Any]) -> List[ChecklistItem]:
    """Items from the first source that yields any, else an empty list."""
    for source in sources:
        items = normalize_items(source)
        if items:
            return items
    return []


PLACEHOLDER_ITEM = ChecklistItem(
    label="Checklist status",
    value=NO_DATA,
    status=ChecklistStatus.NOT_APPLICABLE,
)


# ---------------------------------------------------------------------------
# Template model assembly
# ---------------------------------------------------------------------------


def build_template_model(
    report: Mapping[str, Any],
    overrides: Optional[Mapping[str, Any]],
    report_id: Any,
    now: Optional[datetime] = None,
) -> TemplateModel:
    """
    Resolve a stored report and optional overrides into a TemplateModel.
    """
    now = now or datetime.now()
    r = normalize_record(dict(report or {}))
    o = normalize_record(dict(overrides or {}))

    driver_name = pick_string(
        [
            o.get("driverName"),
            o.get("driver_name"),
            dig(o, "driver", "name"),
            dig(o, "driver", "full_name"),
            r.get("driver_name"),
            dig(r, "driver", "name"),
            dig(r, "driver", "full_name"),
            dig(r, "user", "full_name"),
        ],
        UNKNOWN_DRIVER,
    )

    vehicle_registration = pick_string(
        [
            o.get("vehicleRegistration"),
            o.get("vehicle_registration"),
            dig(o, "vehicle", "registration"),
            dig(o, "vehicle", "registration_number"),
            r.get("vehicle_registration"),
            dig(r, "vehicle", "registration"),
            dig(r, "vehicle", "registration_number"),
            dig(r, "assignment", "vehicle", "registration_number"),
            r.get("vehicle_plate"),
        ],
        NO_DATA,
    )

    vehicle_description = pick_string(
        [
            o.get("vehicleDescription"),
            o.get("vehicle_description"),
            dig(o, "vehicle", "description"),
            dig(o, "vehicle", "model"),
            r.get("vehicle_description"),
            dig(r, "vehicle", "description"),
            dig(r, "vehicle", "model"),
            dig(r, "assignment", "vehicle", "model"),
        ],
        PLACEHOLDER,
    )

    depot_name = pick_string(
        [
            o.get("depotName"),
            o.get("depot_name"),
            dig(o, "depot", "name"),
            r.get("depot_name"),
            dig(r, "depot", "name"),
            dig(r, "assignment", "depot", "name"),
            dig(r, "assignment", "depot_name"),
        ],
        PLACEHOLDER,
    )

    destination_name = pick_string(
        [
            o.get("destinationName"),
            o.get("destination_name"),
            dig(o, "destination", "name"),
            r.get("destination_name"),
            dig(r, "destination", "name"),
            dig(r, "assignment", "destination", "name"),
            dig(r, "assignment", "destination_name"),
        ],
        PLACEHOLDER,
    )

    checklist_date = pick_date(
        [
            o.get("checklistDate"),
            o.get("date"),
            o.get("check_date"),
            r.get("checklist_date"),
            r.get("report_date"),
            r.get("date"),
            r.get("completed_at"),
            r.get("created_at"),
            r.get("inserted_at"),
        ]
    ) or now.strftime(DATE_FORMAT)

    report_number = pick_string(
        [
            o.get("reportNumber"),
            o.get("report_number"),
            r.get("report_number"),
            r.get("reference"),
            r.get("serial"),
            r.get("number"),
            r.get("id"),
            report_id,
        ],
        f"Report-{report_id}",
    )

    shift_window = pick_shift_window(
        explicit=[o.get("shiftWindow"), o.get("shift_window"), r.get("shift_window")],
        starts=[
            o.get("shift_start"),
            r.get("shift_start"),
            dig(r, "assignment", "shift_start"),
        ],
        ends=[
            o.get("shift_end"),
            r.get("shift_end"),
            dig(r, "assignment", "shift_end"),
        ],
    )

    start_odometer = format_odometer(
        [o.get("startOdometer"), o.get("start_odometer"), r.get("start_odometer")]
    )

    fuel_level = format_fuel_level(
        [o.get("fuelLevel"), o.get("fuel_level"), r.get("fuel_level")]
    )

    items = choose_items(
        [
            o.get("items"),
            dig(o, "checklist", "items"),
            o.get("checklist"),
            o.get("answers"),
            r.get("checklist_items"),
            r.get("items"),
            dig(r, "checklist_state", "items"),
            dig(r, "checklist", "items"),
            r.get("checklist"),
            r.get("answers"),
            dig(r, "checklist_payload", "items"),
            dig(r, "checklist_payload", "rows"),
            r.get("checklist_state"),
            r.get("checklist_payload"),
        ]
    )

    notes = pick_string(
        [
            o.get("notes"),
            o.get("comments"),
            o.get("driver_notes"),
            r.get("notes"),
            r.get("comments"),
            r.get("driver_notes"),
            dig(r, "checklist_payload", "notes"),
        ],
        NO_NOTES,
    )

    return TemplateModel(
        driver_name=driver_name,
        vehicle_registration=vehicle_registration,
        vehicle_description=vehicle_description,
        depot_name=depot_name,
        destination_name=destination_name,
        checklist_date=checklist_date,
        report_number=report_number,
        shift_window=shift_window,
        start_odometer=start_odometer,
        fuel_level=fuel_level,
        items=items or [PLACEHOLDER_ITEM],
        notes=notes,
        generated_at=now.strftime(TIMESTAMP_FORMAT),
    )
