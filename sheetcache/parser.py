"""
CSV Parser

Turns raw delimited text from spreadsheet exports into header-keyed rows.
Tolerant of quoting and delimiter variation; never raises.
"""

from __future__ import annotations

import re
from typing import Any, Dict, List

from .logging import get_logger

logger = get_logger(__name__)

FeedRow = Dict[str, str]

# Order doubles as the tie-break when two delimiters are equally frequent.
DELIMITER_PRIORITY = (";", ",", "\t")
DEFAULT_DELIMITER = ","

_BOM = "\ufeff"
_WHITESPACE_RUN = re.compile(r"\s+")


def detect_delimiter(text: str) -> str:
    """
    Pick the delimiter of a CSV payload from its first non-empty line.

    Only occurrences outside quotes are counted. Ties go to the earlier entry
    of DELIMITER_PRIORITY; a line without any candidate yields a comma.
    """
    counts = {delimiter: 0 for delimiter in DELIMITER_PRIORITY}
    in_quotes = False

    for char in text.lstrip("\r\n"):
        if char == '"':
            in_quotes = not in_quotes
        elif in_quotes:
            continue
        elif char in ("\n", "\r"):
            break
        elif char in counts:
            counts[char] += 1

    best = DEFAULT_DELIMITER
    best_count = 0
    for delimiter in DELIMITER_PRIORITY:
        if counts[delimiter] > best_count:
            best = delimiter
            best_count = counts[delimiter]
    return best


def split_rows(text: str, delimiter: str) -> List[List[str]]:
    """
    Split text into rows of raw cells, honoring double-quote escaping.

    ``""`` inside quotes is a literal quote; delimiters and line breaks inside
    quotes are kept. ``\\r\\n`` and a bare ``\\r`` both end a row. A quote that
    never closes runs to the end of the text.
    """
    rows: List[List[str]] = []
    row: List[str] = []
    field: List[str] = []
    in_quotes = False
    i = 0
    length = len(text)

    while i < length:
        char = text[i]

        if char == '"':
            if in_quotes and i + 1 < length and text[i + 1] == '"':
                field.append('"')
                i += 1
            else:
                in_quotes = not in_quotes
        elif in_quotes:
            field.append(char)
        elif char == delimiter:
            row.append("".join(field))
            field = []
        elif char == "\n" or char == "\r":
            if char == "\r" and i + 1 < length and text[i + 1] == "\n":
                i += 1
            row.append("".join(field))
            rows.append(row)
            row = []
            field = []
        else:
            field.append(char)
        i += 1

    if field or row:
        row.append("".join(field))
        rows.append(row)

    return rows


def sanitize_cell(value: Any) -> str:
    """Strip a leading BOM and surrounding whitespace."""
    if value is None:
        return ""
    text = str(value)
    if text.startswith(_BOM):
        text = text[1:]
    return text.strip()


def normalize_header(value: Any) -> str:
    return _WHITESPACE_RUN.sub(" ", sanitize_cell(value)).strip()


def parse(text: Any) -> List[FeedRow]:
    """
    Parse CSV text into rows keyed by the header row.

    The first non-blank row is the header. Short rows are padded with empty
    strings and wholly blank rows are dropped. Empty or non-string input
    yields an empty list.

    Args:
        text: Raw CSV payload

    Returns:
        Parsed rows in source order
    """
    if not isinstance(text, str) or not text:
        logger.warning("Empty or invalid CSV text", input_type=type(text).__name__)
        return []

    delimiter = detect_delimiter(text)
    rows = [
        cells for cells in split_rows(text, delimiter)
        if any(sanitize_cell(cell) for cell in cells)
    ]

    if not rows:
        logger.warning("No valid rows discovered in CSV payload")
        return []

    headers = [normalize_header(cell) for cell in rows[0]]

    data: List[FeedRow] = []
    for cells in rows[1:]:
        record: FeedRow = {}
        for index, header in enumerate(headers):
            record[header] = sanitize_cell(cells[index]) if index < len(cells) else ""
        data.append(record)

    logger.debug(
        "Parsed CSV payload",
        rows=len(data),
        columns=len(headers),
        delimiter=repr(delimiter)
    )
    return data
