"""
Template discovery endpoint.

Lists the templates bundled with the service. Read-only; remote
templates (storage://, drive://, http(s)://) are not enumerable.
"""

from typing import Annotated, List

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from reporter.app.core.config import Settings, get_settings
from reporter.app.registry.sources import (
    DEFAULT_TEMPLATE_NAME,
    classify,
    list_bundled_templates,
)

router = APIRouter(tags=["Templates"])


class TemplateListItem(BaseModel):
    name: str
    kind: str
    is_default: bool


@router.get(
    "/templates",
    response_model=List[TemplateListItem],
    summary="List bundled report templates",
)
def list_templates(
    settings: Annotated[Settings, Depends(get_settings)],
) -> List[TemplateListItem]:
    return [
        TemplateListItem(
            name=name,
            kind=classify(name).value,
            is_default=name == DEFAULT_TEMPLATE_NAME,
        )
        for name in list_bundled_templates(settings.template_dir)
    ]
