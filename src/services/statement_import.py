"""
Bank statement CSV import.

Turns parsed CSV rows into Statement records using a column mapping,
skipping rows that are blacklisted, unparseable or already imported.
Re-importing the same file with the same mapping creates nothing new.
"""

from typing import Iterable, Optional, Sequence
from loguru import logger
from pydantic import BaseModel, Field
from . import csv_parser
from .amounts import extract_currency, parse_amount
from .csv_parser import Delimiter
from .events.event_publisher import EventPublisher, StatementsImported
from .storage.ledger_base import LedgerBase
from ..models.statement import DedupKey, Statement, statement_key


class ColumnMapping(BaseModel):
    """Which cells of which rows become statement fields"""
    row_start: int = 0
    row_end: int = 0  # Inclusive
    date_column: int = 0
    reference_column: int = 1
    amount_column: int = 2
    currency_column: Optional[int] = None
    date_format: str = "yyyy-MM-dd"
    decimal_separator: str = ","
    account: Optional[str] = None
    blacklist: list[str] = Field(default_factory=list)


class ImportResult(BaseModel):
    statements: list[Statement] = Field(default_factory=list)
    skipped_blacklisted: int = 0
    skipped_invalid: int = 0
    skipped_duplicates: int = 0

    @property
    def created(self) -> int:
        return len(self.statements)


def normalize_blacklist(tokens: Iterable[str]) -> list[str]:
    """Trimmed, lower-cased tokens without empties or case-insensitive duplicates"""
    seen: list[str] = []
    for token in tokens:
        normalized = token.strip().lower()
        if normalized and normalized not in seen:
            seen.append(normalized)
    return seen


def is_blacklisted(reference: str, blacklist: Sequence[str]) -> bool:
    lowered = reference.lower()
    return any(token in lowered for token in blacklist)


def import_rows(
    rows: Sequence[Sequence[str]],
    mapping: ColumnMapping,
    known_keys: Iterable[DedupKey] = (),
) -> ImportResult:
    """
    Convert rows within the mapped range into new statements.

    Args:
        rows: Parsed CSV rows (header rows included; crop them via the mapping)
        mapping: Column mapping and parsing options
        known_keys: Dedup keys of statements already persisted

    Returns:
        ImportResult with the new statements in row order and skip counters
    """
    result = ImportResult()
    blacklist = normalize_blacklist(mapping.blacklist)
    account = (mapping.account or "").strip() or None
    seen: set[DedupKey] = set(known_keys)

    for index, row in enumerate(csv_parser.crop(rows, mapping.row_start, mapping.row_end)):
        reference = csv_parser.cell(row, mapping.reference_column)
        if blacklist and is_blacklisted(reference, blacklist):
            result.skipped_blacklisted += 1
            continue

        date = csv_parser.parse_date(csv_parser.cell(row, mapping.date_column), mapping.date_format)
        if date is None:
            logger.debug("Skipping row with unparseable date", row=mapping.row_start + index)
            result.skipped_invalid += 1
            continue

        raw_amount = csv_parser.cell(row, mapping.amount_column)
        parsed = parse_amount(raw_amount, mapping.decimal_separator) if raw_amount else None
        if parsed is None or parsed.amount is None:
            logger.debug("Skipping row with unparseable amount", row=mapping.row_start + index)
            result.skipped_invalid += 1
            continue

        currency = parsed.currency
        if mapping.currency_column is not None:
            mapped_currency = csv_parser.cell(row, mapping.currency_column).strip()
            if mapped_currency:
                currency = extract_currency(mapped_currency) or mapped_currency.upper()

        key = statement_key(account, date, reference, parsed.amount, currency)
        if key in seen:
            result.skipped_duplicates += 1
            continue
        seen.add(key)

        result.statements.append(
            Statement(
                account=account,
                date=date,
                reference=reference,
                amount=parsed.amount,
                currency=currency,
            )
        )

    return result


class StatementImporter:
    """
    One CSV import session.

    Parses the text once (detecting the delimiter unless given), proposes
    a default mapping from sampled rows and imports into a ledger.

    Usage:
        importer = StatementImporter(text)
        mapping = importer.suggest_mapping(account="N26")
        result = importer.import_into(ledger, mapping)
    """

    def __init__(
        self,
        text: str,
        delimiter: Optional[Delimiter] = None,
        sample_rows: int = 50,
        sample_lines: int = 20,
    ):
        self.text = text
        self.sample_rows = sample_rows
        self.delimiter = delimiter or csv_parser.detect_delimiter(text, sample_lines) or Delimiter.COMMA
        self.rows = csv_parser.parse(text, self.delimiter)

    @property
    def column_count(self) -> int:
        return csv_parser.column_count(self.rows)

    def suggest_mapping(
        self,
        decimal_separator: str = ",",
        account: Optional[str] = None,
        blacklist: Iterable[str] = (),
        date_format: Optional[str] = None,
        fallback_date_format: str = "yyyy-MM-dd",
    ) -> ColumnMapping:
        """
        Guess a mapping from the sampled rows.

        Date column and format, and amount column are guessed; the
        reference column is the first column not used for date or amount.
        Falls back to columns 0/1/2 when nothing can be guessed.
        """
        last_column = max(self.column_count - 1, 0)
        date_column = csv_parser.guess_date_column(self.rows, self.sample_rows)
        if date_column is None:
            date_column = 0

        if date_format is None:
            values = [csv_parser.cell(row, date_column) for row in self.rows]
            date_format = csv_parser.guess_date_format(values, self.sample_rows) or fallback_date_format

        amount_column = csv_parser.guess_amount_column(self.rows, decimal_separator, self.sample_rows)
        if amount_column is None or amount_column == date_column:
            amount_column = min(2, last_column)

        reference_column = next(
            (c for c in range(self.column_count) if c not in (date_column, amount_column)),
            min(1, last_column),
        )

        return ColumnMapping(
            row_start=0,
            row_end=max(len(self.rows) - 1, 0),
            date_column=date_column,
            reference_column=reference_column,
            amount_column=amount_column,
            date_format=date_format,
            decimal_separator=decimal_separator,
            account=account,
            blacklist=list(blacklist),
        )

    def date_format_mismatch(self, mapping: ColumnMapping) -> bool:
        cropped = csv_parser.crop(self.rows, mapping.row_start, mapping.row_end)
        values = [csv_parser.cell(row, mapping.date_column) for row in cropped]
        return csv_parser.date_format_mismatch(values, mapping.date_format)

    def import_into(
        self,
        ledger: LedgerBase,
        mapping: ColumnMapping,
        publisher: Optional[EventPublisher] = None,
    ) -> ImportResult:
        result = import_rows(self.rows, mapping, ledger.statement_dedup_keys())
        for statement in result.statements:
            ledger.add_statement(statement)

        logger.info(
            "Statement import finished",
            created=result.created,
            skipped_duplicates=result.skipped_duplicates,
            skipped_invalid=result.skipped_invalid,
            skipped_blacklisted=result.skipped_blacklisted,
        )

        if publisher is not None:
            publisher.publish(StatementsImported(
                statement_ids=[s.id for s in result.statements],
                skipped_duplicates=result.skipped_duplicates,
                skipped_invalid=result.skipped_invalid,
                skipped_blacklisted=result.skipped_blacklisted,
            ))

        return result
