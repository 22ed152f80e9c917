"""
Request and response contracts of the report generation endpoint.

The request model accepts the historical field spellings used by the
driver portal (``reportId``, ``driver_daily_report_id``,
``checklist_template_id``, ``data``) next to the canonical ones.
"""

import re
from typing import Any, Dict, Optional, Union

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    StrictBool,
    StrictInt,
    StrictStr,
    field_validator,
)


COLUMN_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def validate_column_name(value: str) -> str:
    """
    Return ``value`` stripped, or raise ValueError.

    Column names end up as keys of an UPDATE payload, so only plain SQL
    identifiers are accepted.
    """
    cleaned = value.strip()
    if not COLUMN_NAME_RE.match(cleaned):
        raise ValueError(
            f"Invalid column name '{value}'. "
            "Only letters, digits and underscores are allowed."
        )
    return cleaned


class GenerateChecklistReportRequest(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    report_id: Union[StrictInt, StrictStr] = Field(
        validation_alias=AliasChoices(
            "report_id",
            "reportId",
            "driver_daily_report_id",
        ),
    )

    template_id: Optional[StrictStr] = Field(
        default=None,
        validation_alias=AliasChoices("checklist_template_id", "template_id"),
    )

    template_data: Optional[Dict[str, Any]] = Field(
        default=None,
        validation_alias=AliasChoices("template_data", "data"),
    )

    file_name: Optional[StrictStr] = None
    report_url_column: Optional[StrictStr] = None
    report_file_id_column: Optional[StrictStr] = None
    drive_folder_id: Optional[StrictStr] = None
    share_publicly: Optional[StrictBool] = None
    prefer_download_link: Optional[StrictBool] = None

    @field_validator("report_id")
    @classmethod
    def report_id_not_blank(cls, v):
        if isinstance(v, str):
            v = v.strip()
            if not v:
                raise ValueError("Missing required field 'report_id'.")
        return v

    @field_validator("report_url_column")
    @classmethod
    def url_column_is_identifier(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        return validate_column_name(v)

    @field_validator("report_file_id_column")
    @classmethod
    def file_id_column_is_identifier(cls, v: Optional[str]) -> Optional[str]:
        # An explicitly empty value disables the file id write.
        if v is None or not v.strip():
            return v
        return validate_column_name(v)

    @field_validator("drive_folder_id", "file_name", "template_id")
    @classmethod
    def blank_to_none(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not v.strip():
            return None
        return v.strip() if v is not None else v


class GenerateChecklistReportResponse(BaseModel):
    """Success body; ``warning`` is set when the export step failed."""

    success: bool = True
    reportId: Union[int, str]
    fileId: Optional[str] = None
    fileUrl: Optional[str] = None
    templateId: str
    warning: Optional[str] = None
