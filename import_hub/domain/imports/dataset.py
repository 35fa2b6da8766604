from dataclasses import dataclass, field
from typing import Any, Dict, List

from import_hub.core.config import settings


@dataclass
class ParsedDataset:
    """
    Normalized table produced by every format processor.

    Rows map header -> raw value. A header absent from a row is "missing",
    which is kept distinct from a present-but-empty value.
    """
    headers: List[str]
    rows: List[Dict[str, Any]] = field(default_factory=list)
    file_type: str = "csv"

    @property
    def total_rows(self) -> int:
        return len(self.rows)

    @property
    def preview(self) -> List[Dict[str, Any]]:
        return self.rows[: settings.preview_rows]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "file_type": self.file_type,
            "headers": list(self.headers),
            "total_rows": self.total_rows,
            "preview": self.preview,
        }
