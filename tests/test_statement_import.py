"""
Tests for the bank statement import pipeline.

Covers blacklist filtering, row skipping, de-duplication and the
header + two rows German bank export scenario end to end.
"""

import datetime as dt
import pytest
from unittest.mock import Mock
from src.services.csv_parser import Delimiter
from src.services.events import EventPublisher
from src.services.statement_import import (
    ColumnMapping,
    StatementImporter,
    import_rows,
    is_blacklisted,
    normalize_blacklist,
)

GERMAN_EXPORT = (
    "Datum;Verwendungszweck;Betrag\n"
    "15.01.2024;Miete Januar;-850,00 €\n"
    "20.01.2024;Kunde ACME Rechnung 42;1.190,00 €\n"
)


@pytest.fixture
def mapping():
    return ColumnMapping(
        row_start=0,
        row_end=10,
        date_column=0,
        reference_column=1,
        amount_column=2,
        date_format="yyyy-MM-dd",
        decimal_separator=".",
        account="Checking",
    )


class TestBlacklist:
    def test_normalize_dedupes_case_insensitively(self):
        assert normalize_blacklist([" PayPal ", "paypal", "", "Amazon"]) == ["paypal", "amazon"]

    def test_substring_match(self):
        assert is_blacklisted("PAYPAL *Europe", ["paypal"]) is True
        assert is_blacklisted("Rent", ["paypal"]) is False


class TestImportRows:
    def test_rows_in_order_with_account(self, mapping):
        rows = [["2024-01-01", "Rent", "-850.00 EUR"], ["2024-01-02", "Coffee", "-3.20 EUR"]]
        result = import_rows(rows, mapping)
        assert [s.reference for s in result.statements] == ["Rent", "Coffee"]
        assert result.statements[0].amount == -850.0
        assert result.statements[0].currency == "€"
        assert result.statements[0].account == "Checking"
        assert result.statements[0].date == dt.date(2024, 1, 1)

    def test_invalid_rows_are_skipped_and_counted(self, mapping):
        rows = [
            ["date", "reference", "amount"],
            ["2024-01-01", "No amount", ""],
            ["2024-01-02", "Ok", "5.00"],
        ]
        result = import_rows(rows, mapping)
        assert result.created == 1
        assert result.skipped_invalid == 2

    def test_blacklisted_rows_are_skipped(self, mapping):
        mapping.blacklist = ["Transfer "]
        rows = [["2024-01-01", "TRANSFER to savings", "-100.00"], ["2024-01-02", "Shop", "-5.00"]]
        result = import_rows(rows, mapping)
        assert result.skipped_blacklisted == 1
        assert [s.reference for s in result.statements] == ["Shop"]

    def test_duplicates_within_batch_and_known(self, mapping):
        rows = [["2024-01-01", "Rent", "-850.00"], ["2024-01-01", "Rent", "-850.00"]]
        first = import_rows(rows, mapping)
        assert first.created == 1
        assert first.skipped_duplicates == 1

        second = import_rows(rows, mapping, known_keys={s.dedup_key() for s in first.statements})
        assert second.created == 0
        assert second.skipped_duplicates == 2

    def test_currency_column_overrides_amount_currency(self, mapping):
        mapping.currency_column = 3
        rows = [["2024-01-01", "Hotel", "120.00", "usd"]]
        result = import_rows(rows, mapping)
        assert result.statements[0].currency == "USD"

        rows = [["2024-01-01", "Hotel", "120.00", "USD"]]
        assert import_rows(rows, mapping).statements[0].currency == "$"

    def test_crop_range(self, mapping):
        rows = [["2024-01-0%d" % i, f"r{i}", "1.00"] for i in range(1, 6)]
        mapping.row_start, mapping.row_end = 1, 3
        result = import_rows(rows, mapping)
        assert [s.reference for s in result.statements] == ["r2", "r3", "r4"]


class TestStatementImporter:
    def test_german_export_end_to_end(self, ledger):
        """Header + two rows, dd.MM.yyyy dates, ',' decimal separator"""
        importer = StatementImporter(GERMAN_EXPORT)
        assert importer.delimiter == Delimiter.SEMICOLON

        mapping = importer.suggest_mapping(decimal_separator=",")
        assert mapping.date_column == 0
        assert mapping.date_format == "dd.MM.yyyy"
        assert mapping.amount_column == 2
        assert mapping.reference_column == 1

        result = importer.import_into(ledger, mapping)
        assert result.created == 2
        assert result.skipped_invalid == 1  # Header row

        statements = ledger.list_statements()
        assert [(s.amount, s.currency) for s in statements] == [(-850.0, "€"), (1190.0, "€")]
        assert statements[0].reference == "Miete Januar"

    def test_reimport_is_idempotent(self, ledger):
        importer = StatementImporter(GERMAN_EXPORT)
        mapping = importer.suggest_mapping(decimal_separator=",")
        importer.import_into(ledger, mapping)
        keys = ledger.statement_dedup_keys()

        again = StatementImporter(GERMAN_EXPORT).import_into(ledger, mapping)
        assert again.created == 0
        assert again.skipped_duplicates == 2
        assert ledger.statement_dedup_keys() == keys
        assert len(ledger.list_statements()) == 2

    def test_import_publishes_event(self, ledger):
        received = []
        publisher = EventPublisher()
        publisher.subscribe(received.append, event_type="StatementsImported")

        importer = StatementImporter(GERMAN_EXPORT)
        importer.import_into(ledger, importer.suggest_mapping(decimal_separator=","), publisher)

        assert len(received) == 1
        assert len(received[0].statement_ids) == 2
        assert received[0].skipped_invalid == 1

    def test_date_format_mismatch(self):
        importer = StatementImporter(GERMAN_EXPORT)
        mapping = importer.suggest_mapping(decimal_separator=",")
        mapping.row_start = 1
        assert importer.date_format_mismatch(mapping) is False
        assert importer.date_format_mismatch(mapping.model_copy(update={"date_format": "yyyy-MM-dd"})) is True

    def test_explicit_delimiter_skips_detection(self):
        importer = StatementImporter("a|b,c\n", delimiter=Delimiter.PIPE)
        assert importer.rows == [["a", "b,c"]]

    def test_service_bus_forwarding(self, ledger):
        sender = Mock()
        publisher = EventPublisher(service_bus_sender=sender)
        importer = StatementImporter(GERMAN_EXPORT)
        importer.import_into(ledger, importer.suggest_mapping(decimal_separator=","), publisher)
        assert sender.send_messages.called
