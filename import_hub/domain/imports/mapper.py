from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple
import logging

logger = logging.getLogger(__name__)


@dataclass
class FieldMapping:
    """
    Correspondence from source headers to target fields.

    An unmapped header carries ``None``; empty strings are normalized to
    ``None`` so that "no target" is always represented by absence.
    """
    mapping: Dict[str, Optional[str]] = field(default_factory=dict)

    def __post_init__(self):
        self.mapping = {
            str(source): (target.strip() if isinstance(target, str) and target.strip() else None)
            for source, target in self.mapping.items()
        }

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Optional[str]]]) -> "FieldMapping":
        return cls(dict(data or {}))

    def to_dict(self) -> Dict[str, Optional[str]]:
        return dict(self.mapping)

    def target_for(self, header: str) -> Optional[str]:
        return self.mapping.get(header)

    def sources_for(self, target: str) -> List[str]:
        return [source for source, mapped_target in self.mapping.items() if mapped_target == target]

    def is_mapped(self, header: str) -> bool:
        return self.mapping.get(header) is not None

    def set(self, header: str, target: Optional[str]) -> None:
        self.mapping[header] = target.strip() if target and target.strip() else None

    def mapped_items(self) -> List[Tuple[str, str]]:
        return [(source, target) for source, target in self.mapping.items() if target is not None]

    def map_row(self, row: Mapping[str, Any]) -> Dict[str, Any]:
        """Project a source row onto target fields; unmapped source fields are dropped."""
        return {target: row.get(source) for source, target in self.mapped_items()}


def map_rows(rows: Iterable[Mapping[str, Any]], mapping: FieldMapping) -> List[Dict[str, Any]]:
    return [mapping.map_row(row) for row in rows]


def suggest_field_mapping(headers: Iterable[str], known_fields: Iterable[str]) -> FieldMapping:
    """
    Suggest a mapping by case-insensitive substring containment.

    Each header is trimmed and lower-cased, then matched against the target
    table's known fields in either direction; the first match wins. Headers
    without a match stay unmapped. This is a convenience default only.
    """
    fields = list(known_fields)
    suggestion = FieldMapping()
    for header in headers:
        normalized_header = str(header).strip().lower()
        matched = None
        if normalized_header:
            matched = next(
                (
                    candidate
                    for candidate in fields
                    if normalized_header in candidate.lower() or candidate.lower() in normalized_header
                ),
                None,
            )
        suggestion.set(header, matched)

    logger.debug("Suggested mapping: %s", suggestion.mapping)
    return suggestion


def apply_template_mapping(headers: Iterable[str], template_mapping: Mapping[str, Optional[str]]) -> FieldMapping:
    """Pre-fill a mapping for a new file from a saved template (headers absent from the file are ignored)."""
    mapping = FieldMapping()
    for header in headers:
        mapping.set(header, template_mapping.get(header))
    return mapping


def has_data(value: Any) -> bool:
    return value is not None and str(value).strip() != ""


def unmapped_fields_with_data(row: Mapping[str, Any], mapping: FieldMapping) -> List[str]:
    """Source fields of ``row`` that carry a value but have no target."""
    return [source for source, value in row.items() if not mapping.is_mapped(source) and has_data(value)]
