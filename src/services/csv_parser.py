"""
Tabular text parsing for bank statement CSV exports.

Banks ship CSV files with no shared schema: the delimiter, date format and
amount column all vary. This module splits raw text into rows and samples
the result to guess the delimiter, the amount column and the date format,
so the import screen can start from a sensible mapping the user only has
to confirm.

Parsing never raises. Malformed quoting is closed at end of input.
"""

import datetime as dt
import re
from enum import Enum
from typing import Iterable, Sequence
from .amounts import parse_amount

BOM = "\ufeff"


class Delimiter(str, Enum):
    COMMA = ","
    SEMICOLON = ";"
    TAB = "\t"
    PIPE = "|"

    @property
    def label(self) -> str:
        return {
            Delimiter.COMMA: "Comma (,)",
            Delimiter.SEMICOLON: "Semicolon (;)",
            Delimiter.TAB: "Tab",
            Delimiter.PIPE: "Pipe (|)",
        }[self]


# Order matters: the first pattern wins ties when guessing
DATE_FORMATS = [
    "yyyy-MM-dd",
    "dd.MM.yyyy",
    "MM/dd/yyyy",
    "dd/MM/yyyy",
    "yyyy/MM/dd",
    "dd-MM-yyyy",
    "MM-dd-yyyy",
]

_PATTERN_TOKENS = re.compile(r"yyyy|yy|MM|dd|HH|mm|ss")
_STRPTIME_TOKENS = {
    "yyyy": "%Y",
    "yy": "%y",
    "MM": "%m",
    "dd": "%d",
    "HH": "%H",
    "mm": "%M",
    "ss": "%S",
}


def _strip_bom(text: str) -> str:
    return text[1:] if text.startswith(BOM) else text


def _delimiter_char(delimiter: Delimiter | str) -> str:
    return delimiter.value if isinstance(delimiter, Delimiter) else delimiter


def parse(text: str, delimiter: Delimiter | str = Delimiter.COMMA) -> list[list[str]]:
    """
    Split text into rows of trimmed fields.

    \\r, \\n and \\r\\n all end a row. Inside double quotes the delimiter and
    line breaks are kept literally and "" is an escaped quote. Blank lines
    produce no row.
    """
    delim = _delimiter_char(delimiter)
    text = _strip_bom(text)

    rows: list[list[str]] = []
    fields: list[str] = []
    current: list[str] = []
    in_quotes = False
    structured = False  # Row saw a delimiter or quote, so it is not blank

    def finish_row():
        nonlocal fields, current, structured
        fields.append("".join(current))
        if structured or any(field.strip() for field in fields):
            rows.append([field.strip() for field in fields])
        fields = []
        current = []
        structured = False

    i = 0
    n = len(text)
    while i < n:
        ch = text[i]
        if ch == '"':
            if in_quotes and i + 1 < n and text[i + 1] == '"':
                current.append('"')
                i += 2
                continue
            in_quotes = not in_quotes
            structured = True
            i += 1
            continue
        if in_quotes:
            current.append(ch)
            i += 1
            continue
        if ch == delim:
            fields.append("".join(current))
            current = []
            structured = True
            i += 1
            continue
        if ch == "\r" or ch == "\n":
            finish_row()
            if ch == "\r" and i + 1 < n and text[i + 1] == "\n":
                i += 1
            i += 1
            continue
        current.append(ch)
        i += 1

    # An unterminated quote is closed implicitly here
    if current or fields or structured:
        finish_row()

    return rows


def sample_lines(text: str, limit: int = 20) -> list[str]:
    lines = [line for line in re.split(r"\r\n|\r|\n", _strip_bom(text)) if line]
    return lines[:limit]


def detect_delimiter(text: str, sample_size: int = 20) -> Delimiter | None:
    """
    Pick the candidate delimiter occurring most often in the first lines.

    Returns None when no candidate occurs at all.
    """
    lines = sample_lines(text, sample_size)
    best: Delimiter | None = None
    best_score = 0
    for candidate in Delimiter:
        score = sum(line.count(candidate.value) for line in lines)
        if score > best_score:
            best = candidate
            best_score = score
    return best


def column_count(rows: Sequence[Sequence[str]]) -> int:
    return max((len(row) for row in rows), default=0)


def cell(row: Sequence[str], column: int | None) -> str:
    if column is None or column < 0 or column >= len(row):
        return ""
    return row[column]


def crop(rows: Sequence[Sequence[str]], start: int, end: int) -> list[Sequence[str]]:
    """Rows from start to end inclusive, bounds clamped to the available rows"""
    if not rows:
        return []
    last = len(rows) - 1
    start = min(max(start, 0), last)
    end = min(max(end, 0), last)
    if start > end:
        return []
    return list(rows[start:end + 1])


def to_strptime(pattern: str) -> str:
    """Translate a yyyy-MM-dd style pattern into a strptime format"""
    return _PATTERN_TOKENS.sub(lambda m: _STRPTIME_TOKENS[m.group(0)], pattern)


def parse_date(value: str | None, pattern: str) -> dt.date | None:
    value = (value or "").strip()
    if not value or not pattern:
        return None
    try:
        return dt.datetime.strptime(value, to_strptime(pattern)).date()
    except ValueError:
        return None


def date_format_mismatch(values: Iterable[str], pattern: str) -> bool:
    """True when any non-empty value does not parse with pattern"""
    non_empty = [value.strip() for value in values if value and value.strip()]
    if not pattern or not non_empty:
        return False
    return any(parse_date(value, pattern) is None for value in non_empty)


def guess_date_format(values: Iterable[str], sample_size: int = 50) -> str | None:
    """
    Pick the pattern parsing the most sampled values.

    The first listed pattern wins ties, so ambiguous values such as
    01/02/2024 resolve to MM/dd/yyyy.
    """
    sample = [value for value in list(values)[:sample_size] if value and value.strip()]
    best: str | None = None
    best_count = 0
    for pattern in DATE_FORMATS:
        count = sum(1 for value in sample if parse_date(value, pattern) is not None)
        if count > best_count:
            best = pattern
            best_count = count
    return best


def guess_date_column(rows: Sequence[Sequence[str]], sample_size: int = 50) -> int | None:
    sample = rows[:sample_size]
    best: int | None = None
    best_count = 0
    for column in range(column_count(sample)):
        values = [cell(row, column) for row in sample]
        count = sum(
            1 for value in values
            if any(parse_date(value, pattern) is not None for pattern in DATE_FORMATS)
        )
        if count > best_count:
            best = column
            best_count = count
    return best


def guess_amount_column(
    rows: Sequence[Sequence[str]],
    decimal_separator: str = ",",
    sample_size: int = 50,
) -> int | None:
    """
    Pick the column whose sampled cells parse as amounts most often.

    Ties go to the column with more non-empty cells, then to the column
    whose cells carry the decimal separator more often. A column with any
    cell holding more than one "." (dates like 01.02.2024) is disqualified.
    """
    sample = rows[:sample_size]
    best: int | None = None
    best_score: tuple[int, int, int] = (0, 0, 0)
    for column in range(column_count(sample)):
        values = [cell(row, column) for row in sample]
        if any(value.count(".") > 1 for value in values):
            continue
        parsed = sum(
            1 for value in values
            if value and parse_amount(value, decimal_separator).amount is not None
        )
        if parsed == 0:
            continue
        non_empty = sum(1 for value in values if value)
        with_separator = sum(1 for value in values if decimal_separator in value)
        score = (parsed, non_empty, with_separator)
        if score > best_score:
            best = column
            best_score = score
    return best
