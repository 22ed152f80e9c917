from enum import Enum
from typing import Annotated, List

from pydantic import BaseModel, ConfigDict, Field, computed_field


NonEmpty = Annotated[str, Field(min_length=1)]


class ChecklistStatus(str, Enum):
    """Tri-state outcome of a single inspected point."""

    OK = "OK"
    ATTENTION = "ATTENTION"
    NOT_APPLICABLE = "NOT_APPLICABLE"

    @property
    def label(self) -> str:
        return _STATUS_LABELS[self]

    @property
    def symbol(self) -> str:
        return _STATUS_SYMBOLS[self]


_STATUS_LABELS = {
    ChecklistStatus.OK: "OK",
    ChecklistStatus.ATTENTION: "Attention",
    ChecklistStatus.NOT_APPLICABLE: "N/A",
}

# Glyphs must exist in the WinAnsi encoding of the standard PDF fonts.
_STATUS_SYMBOLS = {
    ChecklistStatus.OK: "+",
    ChecklistStatus.ATTENTION: "!",
    ChecklistStatus.NOT_APPLICABLE: "-",
}


class ChecklistItem(BaseModel):
    """
    Canonical checklist entry.

    ``value`` is the display text derived from the raw answer; ``status``
    is its normalized tri-state reading.
    """

    model_config = ConfigDict(frozen=True)

    label: NonEmpty
    value: NonEmpty
    status: ChecklistStatus

    @computed_field
    @property
    def value_label(self) -> str:
        return self.status.label

    @computed_field
    @property
    def symbol(self) -> str:
        return self.status.symbol

    @computed_field
    @property
    def is_ok(self) -> bool:
        return self.status is ChecklistStatus.OK

    @computed_field
    @property
    def is_attention(self) -> bool:
        return self.status is ChecklistStatus.ATTENTION

    @computed_field
    @property
    def is_not_applicable(self) -> bool:
        return self.status is ChecklistStatus.NOT_APPLICABLE


class TemplateModel(BaseModel):
    """
    Fallback-complete substitution values for one report.

    Every string field is non-empty: absent source data is represented
    by a placeholder, never by None.
    """

    model_config = ConfigDict(frozen=True)

    driver_name: NonEmpty
    vehicle_registration: NonEmpty
    vehicle_description: NonEmpty
    depot_name: NonEmpty
    destination_name: NonEmpty
    checklist_date: NonEmpty
    report_number: NonEmpty
    shift_window: NonEmpty
    start_odometer: NonEmpty
    fuel_level: NonEmpty
    items: Annotated[List[ChecklistItem], Field(min_length=1)]
    notes: NonEmpty
    generated_at: NonEmpty

    @computed_field
    @property
    def defects(self) -> List[ChecklistItem]:
        return [item for item in self.items if item.is_attention]

    @computed_field
    @property
    def defects_count(self) -> int:
        return len(self.defects)

    def render_context(self) -> dict:
        """Plain-dict view handed to the markup engine."""
        return self.model_dump(mode="json")
