"""GEDCOM record parsing and export utilities."""

import io
import logging
import re

from gedcom.element.element import Element
from gedcom.parser import GedcomFormatViolationError, Parser

from errors import MalformedInputError
from models import RawRecord

logger = logging.getLogger("familyarchive.parser")

# level, optional @xref@, tag, optional value
GEDCOM_LINE = re.compile(r"^\s*(\d+)\s+(?:(@[^@\s]+@)\s+)?([A-Za-z0-9_]+)(?:\s(.*))?$")

# GEDCOM 5.5 never nests deeper than 99 levels
MAX_LEVEL = 99

# GEDCOM terminates lines with CR, LF or CRLF only; other Unicode line
# breaks (NEL, U+2028, form feed) are ordinary value characters
LINE_TERMINATOR = re.compile(r"\r\n|\r|\n")


# ============================================================================
# Line Normalization
# ============================================================================

def normalize_gedcom_lines(content: str) -> list[str]:
    """
    Tokenize raw GEDCOM text and return canonical ``level [xref] TAG [value]`` lines.

    Blank lines, leading indentation, CRLF endings and a UTF-8 BOM are tolerated.
    Raises MalformedInputError for a line without a level number or tag, for a
    first line that is not level 0, and for a level that rises by more than one.
    """
    lines = []
    previous_level = None

    for line_number, line in enumerate(LINE_TERMINATOR.split(content.lstrip("\ufeff")), start=1):
        if not line.strip():
            continue

        match = GEDCOM_LINE.match(line)
        if match is None:
            raise MalformedInputError(
                f"Line {line_number} is not a valid GEDCOM line: {line.strip()!r}",
                line_number=line_number,
            )

        level_token, xref, tag, value = match.groups()
        level = int(level_token)

        if level > MAX_LEVEL:
            raise MalformedInputError(
                f"Line {line_number} nests deeper than {MAX_LEVEL} levels",
                line_number=line_number,
            )
        if previous_level is None and level != 0:
            raise MalformedInputError(
                f"Line {line_number} must start a record at level 0, found level {level}",
                line_number=line_number,
            )
        if previous_level is not None and level > previous_level + 1:
            raise MalformedInputError(
                f"Line {line_number} jumps from level {previous_level} to {level}",
                line_number=line_number,
            )
        previous_level = level

        normalized = f"{level} {xref} {tag}" if xref else f"{level} {tag}"
        value = (value or "").rstrip("\r\n")
        if value:
            normalized += f" {value}"
        lines.append(normalized)

    return lines


# ============================================================================
# Parsing
# ============================================================================

def _element_to_record(element: Element) -> RawRecord:
    """Convert a python-gedcom element (and its subtree) into a RawRecord."""
    return RawRecord(
        level=element.get_level(),
        xref=element.get_pointer() or None,
        tag=element.get_tag(),
        value=element.get_value() or "",
        children=[_element_to_record(child) for child in element.get_child_elements()],
    )


def parse_gedcom_content(content: str) -> list[RawRecord]:
    """Parse GEDCOM content from a string into a forest of top-level records."""
    lines = normalize_gedcom_lines(content)
    stream = io.BytesIO("".join(f"{line}\n" for line in lines).encode("utf-8"))

    parser = Parser()
    try:
        parser.parse(stream, strict=True)
    except GedcomFormatViolationError as e:
        raise MalformedInputError(str(e)) from e

    records = [_element_to_record(element) for element in parser.get_root_child_elements()]
    logger.info(f"Parsed {len(lines)} GEDCOM lines into {len(records)} top-level records")
    return records


def decode_gedcom_bytes(content: bytes) -> str:
    """Decode uploaded GEDCOM bytes, falling back to latin-1 when not UTF-8."""
    try:
        return content.decode("utf-8-sig")
    except UnicodeDecodeError:
        logger.info("UTF-8 decode failed, trying latin-1 encoding")
        return content.decode("latin-1")


def parse_gedcom_file(file_path: str) -> list[RawRecord]:
    """Parse a GEDCOM file and return its top-level records."""
    with open(file_path, "rb") as f:
        content = f.read()
    logger.debug(f"Read {len(content)} bytes from {file_path}")
    return parse_gedcom_content(decode_gedcom_bytes(content))


def find_records(records: list[RawRecord], tag: str) -> list[RawRecord]:
    """Top-level records with the given tag, in file order."""
    return [record for record in records if record.tag == tag]


# ============================================================================
# Export GEDCOM
# ============================================================================

def export_gedcom_content(records: list[RawRecord]) -> str:
    """Render a record forest back to GEDCOM text."""
    lines = []

    def record_to_lines(record: RawRecord, level: int = 0):
        """Recursively convert a record to GEDCOM lines."""
        if record.xref:
            line = f"{level} {record.xref} {record.tag}"
        else:
            line = f"{level} {record.tag}"

        if record.value:
            line += f" {record.value}"

        lines.append(line)

        for child in record.children:
            record_to_lines(child, level + 1)

    for record in records:
        record_to_lines(record, 0)

    return "\n".join(lines)
