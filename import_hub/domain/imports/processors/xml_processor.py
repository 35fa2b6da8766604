import io
import logging
from typing import Any, Dict, List

from lxml import etree

from import_hub.domain.imports.dataset import ParsedDataset
from import_hub.domain.imports.errors import ParseError

logger = logging.getLogger(__name__)


def _local_name(tag: str) -> str:
    return etree.QName(tag).localname


def process_xml(file_content: bytes) -> ParsedDataset:
    """
    Process an XML document into a dataset.

    Each direct child of the root is a record. Its attributes and the text of
    its child elements become fields; a record with neither contributes its
    own tag and text as a single field. Records may differ in shape, so the
    headers are the union of every field seen, in discovery order.
    """
    parser = etree.XMLParser(resolve_entities=False, no_network=True)
    try:
        root = etree.parse(io.BytesIO(file_content), parser).getroot()
    except etree.XMLSyntaxError as e:
        raise ParseError(f"Error parsing XML: {e}", "xml") from e

    headers: Dict[str, None] = {}
    rows: List[Dict[str, Any]] = []

    # Skip comments and processing instructions
    for record_element in (child for child in root if isinstance(child.tag, str)):
        row: Dict[str, Any] = {}
        for name, value in record_element.attrib.items():
            row[_local_name(name)] = value

        children = [child for child in record_element if isinstance(child.tag, str)]
        for child in children:
            row[_local_name(child.tag)] = "".join(child.itertext())

        if not children and not record_element.attrib:
            row[_local_name(record_element.tag)] = record_element.text or ""

        for key in row:
            headers.setdefault(key, None)
        rows.append(row)

    if not rows:
        raise ParseError("XML file contains no data", "xml")

    header_list = list(headers)
    logger.info("Processed XML with %d rows, columns: %s", len(rows), header_list)
    return ParsedDataset(headers=header_list, rows=rows, file_type="xml")
