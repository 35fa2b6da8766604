import io
import logging
from typing import Any, Dict, List

import pandas as pd

from import_hub.domain.imports.dataset import ParsedDataset
from import_hub.domain.imports.errors import ParseError
from import_hub.utils.serialization import make_json_safe

logger = logging.getLogger(__name__)


def _decode_utf8(file_content: bytes, file_type: str) -> str:
    try:
        text_content = file_content.decode("utf-8")
    except UnicodeDecodeError as e:
        raise ParseError(f"File is not valid UTF-8: {e}", file_type) from e
    return text_content.lstrip("\ufeff")


def _is_missing(value: Any) -> bool:
    return value is None or (isinstance(value, float) and pd.isna(value))


def process_csv(file_content: bytes) -> ParsedDataset:
    """
    Process a delimited text file into a dataset.

    The first line holds the headers and blank lines are skipped. Every value
    is kept as the raw string from the file; cells missing from short rows are
    left out of the row instead of being turned into empty strings.
    """
    text_content = _decode_utf8(file_content, "csv")
    if not text_content.strip():
        raise ParseError("CSV file is empty", "csv")

    try:
        df = pd.read_csv(
            io.StringIO(text_content),
            dtype=str,
            keep_default_na=False,
            skip_blank_lines=True,
        )
    except pd.errors.EmptyDataError as e:
        raise ParseError("CSV file is empty", "csv") from e
    except (pd.errors.ParserError, ValueError) as e:
        raise ParseError(f"Error parsing CSV: {e}", "csv") from e

    headers = [str(column) for column in df.columns]
    rows: List[Dict[str, Any]] = []
    for values in df.itertuples(index=False, name=None):
        rows.append(
            {header: value for header, value in zip(headers, values) if not _is_missing(value)}
        )

    if not rows:
        raise ParseError("CSV file contains no data rows", "csv")

    logger.info("Processed CSV with %d rows, columns: %s", len(rows), headers)
    return ParsedDataset(headers=headers, rows=rows, file_type="csv")


def _read_first_sheet(file_content: bytes) -> pd.DataFrame:
    try:
        return pd.read_excel(
            io.BytesIO(file_content), sheet_name=0, header=None, dtype=object, engine="openpyxl"
        )
    except Exception:
        # Fallback to default pandas engine (legacy .xls)
        try:
            return pd.read_excel(io.BytesIO(file_content), sheet_name=0, header=None, dtype=object)
        except Exception as e:
            raise ParseError(f"Could not read Excel file: {e}", "excel") from e


def _header_name(value: Any, index: int) -> str:
    if _is_missing(value) or str(value).strip() == "":
        return f"col_{index}"
    return str(make_json_safe(value)).strip()


def process_excel(file_content: bytes) -> ParsedDataset:
    """
    Process the first sheet of a workbook into a dataset.

    The first non-blank row holds the headers; later rows are zipped to the
    headers by position and missing cells default to an empty string.
    """
    if not file_content:
        raise ParseError("Excel file is empty", "excel")

    df = _read_first_sheet(file_content).dropna(how="all")
    if df.empty:
        raise ParseError("Excel file is empty", "excel")

    headers = [_header_name(value, index) for index, value in enumerate(df.iloc[0].tolist())]

    rows: List[Dict[str, Any]] = []
    for values in df.iloc[1:].itertuples(index=False, name=None):
        row: Dict[str, Any] = {}
        for position, header in enumerate(headers):
            value = values[position] if position < len(values) else None
            row[header] = "" if _is_missing(value) else make_json_safe(value)
        rows.append(row)

    if not rows:
        raise ParseError("Excel file contains no data rows", "excel")

    logger.info("Processed Excel sheet with %d rows, columns: %s", len(rows), headers)
    return ParsedDataset(headers=headers, rows=rows, file_type="excel")
