"""
Saved mapping templates (create and list only).
"""
from typing import Optional

from fastapi import APIRouter

from import_hub.api.dependencies import raise_http_error
from import_hub.api.schemas.shared import ImportTemplateCreate, ImportTemplateInfo, ImportTemplateListResponse
from import_hub.domain.imports.destination import ensure_safe_table_name
from import_hub.domain.imports.templates import list_templates, save_template

router = APIRouter(tags=["import-templates"])


@router.get("/import-templates", response_model=ImportTemplateListResponse)
async def list_templates_endpoint(user_id: str, target_table: Optional[str] = None):
    return ImportTemplateListResponse(
        success=True, templates=list_templates(user_id, target_table=target_table)
    )


@router.post("/import-templates", response_model=ImportTemplateInfo)
async def create_template_endpoint(request: ImportTemplateCreate):
    try:
        target_table = ensure_safe_table_name(request.target_table)
    except Exception as e:
        raise_http_error(e)
    return save_template(
        user_id=request.user_id,
        name=request.name,
        description=request.description,
        target_table=target_table,
        field_mapping=request.field_mapping,
        is_public=request.is_public,
    )
