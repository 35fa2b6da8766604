"""
Saved mapping templates.

Only what the import flow needs is provided here: saving a template,
listing the ones visible to a user and pre-filling a mapping from one.
"""
import logging
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import or_, select, update

from import_hub.db.models import ImportTemplate
from import_hub.db.session import get_session_local
from import_hub.domain.imports.mapper import FieldMapping, apply_template_mapping

logger = logging.getLogger(__name__)


def _row_to_template(template: ImportTemplate) -> Dict[str, Any]:
    return {
        "id": template.id,
        "user_id": template.user_id,
        "name": template.name,
        "description": template.description,
        "target_table": template.target_table,
        "field_mapping": template.field_mapping,
        "validation_rules": template.validation_rules,
        "is_public": template.is_public,
        "usage_count": template.usage_count,
        "created_at": template.created_at,
        "updated_at": template.updated_at,
    }


def save_template(
    *,
    user_id: str,
    name: str,
    target_table: str,
    field_mapping: Dict[str, Optional[str]],
    description: Optional[str] = None,
    validation_rules: Optional[Dict[str, Any]] = None,
    is_public: bool = False,
) -> Dict[str, Any]:
    SessionLocal = get_session_local()
    with SessionLocal() as db:
        template = ImportTemplate(
            user_id=user_id,
            name=name,
            description=description,
            target_table=target_table,
            field_mapping=FieldMapping.from_dict(field_mapping).to_dict(),
            validation_rules=validation_rules,
            is_public=is_public,
        )
        db.add(template)
        db.commit()
        db.refresh(template)
        logger.info("Saved import template %s ('%s') for %s", template.id, name, target_table)
        return _row_to_template(template)


def list_templates(user_id: str, *, target_table: Optional[str] = None) -> List[Dict[str, Any]]:
    """Templates owned by the user plus public ones, newest first."""
    SessionLocal = get_session_local()
    with SessionLocal() as db:
        query = select(ImportTemplate).where(
            or_(ImportTemplate.user_id == user_id, ImportTemplate.is_public.is_(True))
        )
        if target_table:
            query = query.where(ImportTemplate.target_table == target_table)
        templates = db.scalars(query.order_by(ImportTemplate.created_at.desc())).all()
        return [_row_to_template(template) for template in templates]


def mapping_from_template(template_id: str, headers: Iterable[str]) -> Optional[FieldMapping]:
    """
    Pre-fill a mapping for a new file's headers from a saved template.

    Returns None when the template does not exist. Applying a template
    counts as one use.
    """
    SessionLocal = get_session_local()
    with SessionLocal() as db:
        template = db.get(ImportTemplate, template_id)
        if template is None:
            return None
        mapping = apply_template_mapping(headers, template.field_mapping or {})
        db.execute(
            update(ImportTemplate)
            .where(ImportTemplate.id == template_id)
            .values(usage_count=ImportTemplate.usage_count + 1)
        )
        db.commit()
        return mapping
