from enum import Enum

from pydantic import BaseModel, ConfigDict


class SegmentType(str, Enum):
    HEADING1 = "heading1"
    HEADING2 = "heading2"
    HEADING3 = "heading3"
    PARAGRAPH = "paragraph"
    LIST_ITEM = "list-item"
    SPACER = "spacer"

    @property
    def is_heading(self) -> bool:
        return self in (
            SegmentType.HEADING1,
            SegmentType.HEADING2,
            SegmentType.HEADING3,
        )


class ContentSegment(BaseModel):
    """One lexical unit of a compiled report."""

    model_config = ConfigDict(frozen=True)

    type: SegmentType
    text: str = ""


SPACER = ContentSegment(type=SegmentType.SPACER)
