"""
Format detection and dispatch to the per-format processors.
"""
import logging
import os
from typing import Callable, Dict, Optional

from import_hub.domain.imports.dataset import ParsedDataset
from import_hub.domain.imports.errors import ParseError, UnsupportedFileTypeError
from import_hub.domain.imports.processors.csv_processor import process_csv, process_excel
from import_hub.domain.imports.processors.json_processor import process_json
from import_hub.domain.imports.processors.xml_processor import process_xml

logger = logging.getLogger(__name__)

_EXTENSIONS = {
    ".csv": "csv",
    ".xlsx": "excel",
    ".xls": "excel",
    ".json": "json",
    ".xml": "xml",
}

PROCESSORS: Dict[str, Callable[[bytes], ParsedDataset]] = {
    "csv": process_csv,
    "excel": process_excel,
    "json": process_json,
    "xml": process_xml,
}


def detect_file_type(filename: str) -> str:
    """
    Detect file type from filename extension.

    Returns:
        File type: 'csv', 'excel', 'json', or 'xml'

    Raises:
        UnsupportedFileTypeError: If the extension is not supported
    """
    extension = os.path.splitext(filename or "")[1].lower()
    file_type = _EXTENSIONS.get(extension)
    if file_type is None:
        raise UnsupportedFileTypeError(f"Unsupported file extension: '{extension or filename}'")
    return file_type


def parse_file(file_content: bytes, file_type: Optional[str] = None, *, filename: Optional[str] = None) -> ParsedDataset:
    """
    Turn raw file bytes into a ParsedDataset.

    Either ``file_type`` or ``filename`` must be given. Any structural,
    encoding or emptiness problem raises ParseError; no partial dataset is
    ever returned.
    """
    if file_type is None:
        if filename is None:
            raise ValueError("parse_file requires file_type or filename")
        file_type = detect_file_type(filename)

    processor = PROCESSORS.get(file_type)
    if processor is None:
        raise UnsupportedFileTypeError(f"Unsupported file type: {file_type}", file_type)

    if not file_content:
        raise ParseError(f"{file_type.upper()} file is empty", file_type)

    dataset = processor(file_content)
    logger.info(
        "Parsed %s file%s: %d rows, %d headers",
        file_type,
        f" '{filename}'" if filename else "",
        dataset.total_rows,
        len(dataset.headers),
    )
    return dataset
