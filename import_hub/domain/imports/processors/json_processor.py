import json
import logging
from typing import Any, Dict, List

from import_hub.domain.imports.dataset import ParsedDataset
from import_hub.domain.imports.errors import ParseError

logger = logging.getLogger(__name__)


def _extract_records(data: Any) -> List[Any]:
    if isinstance(data, list):
        return data
    if isinstance(data, dict):
        nested = data.get("data")
        if isinstance(nested, list):
            return nested
        for value in data.values():
            if isinstance(value, list) and value and all(isinstance(item, dict) for item in value):
                return value
        return [data]
    raise ParseError("JSON must contain an object or array of objects", "json")


def process_json(file_content: bytes) -> ParsedDataset:
    """
    Process a JSON document into a dataset.

    Accepts a top-level array of objects, an object wrapping such an array
    (``{"data": [...]}`` or the first array-of-objects field) or a single
    object, which becomes one row. Headers are the keys of the first row.
    """
    try:
        data = json.loads(file_content.decode("utf-8-sig"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ParseError(f"Error parsing JSON: {e}", "json") from e

    records = _extract_records(data)
    if not records:
        raise ParseError("JSON file contains no data", "json")

    rows: List[Dict[str, Any]] = []
    for index, record in enumerate(records, start=1):
        if not isinstance(record, dict):
            raise ParseError(f"JSON record {index} is not an object", "json")
        rows.append(dict(record))

    headers = [str(key) for key in rows[0].keys()]
    logger.info("Processed JSON with %d rows, columns: %s", len(rows), headers)
    return ParsedDataset(headers=headers, rows=rows, file_type="json")
