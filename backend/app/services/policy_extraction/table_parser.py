"""
Tabular Response Parser
=======================

Turns a loosely formatted two-column table (``label | value``) into an
ordered label -> value map.

Engine responses are often wrapped in code fences, preceded by prose or a
header row, and sometimes written without the outer delimiters. The
parser tolerates all of these and reports the outcome as a tagged result:

- ParsedOk(rows)      - at least one data row
- ParsedEmpty()       - a table was found but it had no data rows
- ParsedError(reason) - no tabular content at all

Lines that cannot be split are skipped, never raised.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Union

logger = logging.getLogger(__name__)

_FENCED_BLOCK = re.compile(r'```[^\n`]*\n(.*?)```', re.DOTALL)
_FENCE_LINE = re.compile(r'^\s*```[^`]*$')
_SEPARATOR = re.compile(r'^[\s|:+=\-]+$')
_EMPHASIS = re.compile(r'^[*_`]+|[*_`]+$')

_NULL_TOKENS = {'null'}

# Header row detection: a "field" token in the first cell and a
# "value" token in the second
_HEADER_FIELD_TOKENS = {'field', 'fields'}
_HEADER_VALUE_TOKENS = {'value', 'values'}


@dataclass(frozen=True)
class ParsedOk:
    rows: Dict[str, Optional[str]] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class ParsedEmpty:

    @property
    def rows(self) -> Dict[str, Optional[str]]:
        return {}

    @property
    def ok(self) -> bool:
        return False


@dataclass(frozen=True)
class ParsedError:
    reason: str

    @property
    def rows(self) -> Dict[str, Optional[str]]:
        return {}

    @property
    def ok(self) -> bool:
        return False


ParseResult = Union[ParsedOk, ParsedEmpty, ParsedError]


def outcome_name(result: ParseResult) -> str:
    """Short name of a parse outcome for reports."""
    if isinstance(result, ParsedOk):
        return "ok"
    if isinstance(result, ParsedEmpty):
        return "empty"
    return "error"


def strip_fences(text: str) -> str:
    """
    Remove code fences. When a fenced block is embedded in prose, only
    the body of the first block is kept.
    """
    match = _FENCED_BLOCK.search(text)
    if match:
        return match.group(1)
    return '\n'.join(line for line in text.splitlines() if not _FENCE_LINE.match(line))


def _clean_cell(cell: str) -> str:
    return _EMPHASIS.sub('', cell.strip()).strip()


def is_separator_line(line: str) -> bool:
    return bool(_SEPARATOR.match(line)) and '-' in line


class TabularResponseParser:
    """
    Parser for delimited label/value tables.

    Args:
        delimiter: Cell delimiter (default "|")
        max_header_lines: How many leading table lines may be discarded as
            headers or separators
    """

    def __init__(self, delimiter: str = '|', max_header_lines: int = 3):
        if not delimiter:
            raise ValueError("delimiter must be a non-empty string")
        self.delimiter = delimiter
        self.max_header_lines = max_header_lines

    def parse(self, text: Optional[str]) -> ParseResult:
        if text is None or not text.strip():
            return ParsedError("empty response")

        lines = [line.strip() for line in strip_fences(text).splitlines()]
        lines = [line for line in lines if line]

        table_lines = [line for line in lines if self._is_bounded(line)]
        if not table_lines:
            # Fall back to rows written without outer delimiters
            table_lines = [line for line in lines if self.delimiter in line]
        if not table_lines:
            return ParsedError("no tabular lines in response")

        table_lines = self._drop_header_lines(table_lines)

        rows: Dict[str, Optional[str]] = {}
        skipped = 0
        for line in table_lines:
            if is_separator_line(line):
                continue
            cells = self.split_cells(line)
            if len(cells) < 2 or not cells[0]:
                skipped += 1
                continue
            label, value = cells[0], cells[1]
            value = None if (not value or value.lower() in _NULL_TOKENS) else value
            # First non-null value for a label wins
            if label not in rows or (rows[label] is None and value is not None):
                rows[label] = value

        if skipped:
            logger.debug(f"Skipped {skipped} unsplittable table line(s)")

        if not rows:
            return ParsedEmpty()
        return ParsedOk(rows=rows)

    def split_cells(self, line: str) -> List[str]:
        """Split one table line into cleaned cells, dropping outer delimiters."""
        body = line.strip()
        if body.startswith(self.delimiter):
            body = body[len(self.delimiter):]
        if body.endswith(self.delimiter):
            body = body[:-len(self.delimiter)]
        return [_clean_cell(cell) for cell in body.split(self.delimiter)]

    def iter_table_rows(self, text: str) -> Iterator[List[str]]:
        """
        Yield the cells of every delimiter-bounded, non-separator line of a
        document. Used to look values up in tables embedded in document text.
        """
        for raw_line in (text or '').splitlines():
            line = raw_line.strip()
            if not self._is_bounded(line) or is_separator_line(line):
                continue
            cells = self.split_cells(line)
            if any(cells):
                yield cells

    def _is_bounded(self, line: str) -> bool:
        return (
            len(line) > len(self.delimiter)
            and line.startswith(self.delimiter)
            and line.endswith(self.delimiter)
        )

    def _drop_header_lines(self, table_lines: List[str]) -> List[str]:
        """
        Drop leading separators and at most one header row (plus the
        separator under it). Dropping stops at the first line that is
        neither.
        """
        limit = min(self.max_header_lines, len(table_lines))
        dropped = 0
        while dropped < limit and is_separator_line(table_lines[dropped]):
            dropped += 1
        if dropped < limit and self._is_header(table_lines[dropped]):
            dropped += 1
            if dropped < len(table_lines) and is_separator_line(table_lines[dropped]):
                dropped += 1
        return table_lines[dropped:]

    def _is_header(self, line: str) -> bool:
        cells = self.split_cells(line)
        if len(cells) < 2:
            return False
        first = set(re.findall(r'[a-z]+', cells[0].lower()))
        second = set(re.findall(r'[a-z]+', cells[1].lower()))
        return bool(first & _HEADER_FIELD_TOKENS) and bool(second & _HEADER_VALUE_TOKENS)
