"""
Unit tests for csv_parser module.

Covers row splitting with quotes, delimiter detection and the column
guessing used to propose an import mapping.
"""

import datetime as dt
import pytest
from src.services.csv_parser import (
    Delimiter,
    cell,
    column_count,
    crop,
    date_format_mismatch,
    detect_delimiter,
    guess_amount_column,
    guess_date_column,
    guess_date_format,
    parse,
    parse_date,
    to_strptime,
)


class TestParse:
    """Tests for splitting text into rows"""

    def test_simple_rows_are_trimmed(self):
        rows = parse("a, b ,c\n1,2,3\n", Delimiter.COMMA)
        assert rows == [["a", "b", "c"], ["1", "2", "3"]]

    def test_all_line_endings(self):
        rows = parse("a;b\r\nc;d\re;f\ng;h", Delimiter.SEMICOLON)
        assert rows == [["a", "b"], ["c", "d"], ["e", "f"], ["g", "h"]]

    def test_quoted_delimiter_is_literal(self):
        rows = parse('"Miete, Januar",-850\n', Delimiter.COMMA)
        assert rows == [["Miete, Januar", "-850"]]

    def test_escaped_quote(self):
        rows = parse('"Say ""hi""",1', Delimiter.COMMA)
        assert rows == [['Say "hi"', "1"]]

    def test_newline_inside_quotes_stays_in_field(self):
        rows = parse('"line one\nline two",5\nnext,6', Delimiter.COMMA)
        assert rows == [["line one\nline two", "5"], ["next", "6"]]

    def test_blank_lines_produce_no_row(self):
        rows = parse("a,b\n\n   \nc,d\n", Delimiter.COMMA)
        assert rows == [["a", "b"], ["c", "d"]]

    def test_empty_fields_are_kept(self):
        rows = parse("a,,c\n,,\n", Delimiter.COMMA)
        assert rows == [["a", "", "c"], ["", "", ""]]

    def test_bom_is_stripped(self):
        rows = parse("\ufeffDatum;Betrag\n", Delimiter.SEMICOLON)
        assert rows == [["Datum", "Betrag"]]

    def test_unterminated_quote_is_closed_at_end(self):
        rows = parse('a,"open field', Delimiter.COMMA)
        assert rows == [["a", "open field"]]

    def test_empty_text(self):
        assert parse("", Delimiter.COMMA) == []


class TestDetectDelimiter:
    """Tests for delimiter detection"""

    @pytest.mark.parametrize("delimiter", list(Delimiter))
    def test_consistent_delimiter_is_detected(self, delimiter):
        d = delimiter.value
        text = "\n".join([f"date{d}reference{d}amount", f"2024-01-01{d}Rent{d}-850", f"2024-01-02{d}Shop{d}-12"])
        assert detect_delimiter(text) == delimiter

    def test_no_candidate_returns_none(self):
        assert detect_delimiter("just text\nmore text") is None

    def test_ties_go_to_first_candidate(self):
        assert detect_delimiter("a,b;c") == Delimiter.COMMA

    def test_only_first_lines_are_sampled(self):
        lines = ["a;b"] * 2 + ["a,b,c,d,e"] * 10
        assert detect_delimiter("\n".join(lines), sample_size=2) == Delimiter.SEMICOLON


class TestHelpers:
    def test_column_count_uses_widest_row(self):
        assert column_count([["a"], ["a", "b", "c"], []]) == 3
        assert column_count([]) == 0

    def test_cell_out_of_range_is_empty(self):
        assert cell(["a", "b"], 1) == "b"
        assert cell(["a", "b"], 5) == ""
        assert cell(["a"], None) == ""

    def test_crop_is_inclusive_and_clamped(self):
        rows = [["0"], ["1"], ["2"], ["3"]]
        assert crop(rows, 1, 2) == [["1"], ["2"]]
        assert crop(rows, -5, 99) == rows
        assert crop(rows, 3, 1) == []
        assert crop([], 0, 0) == []


class TestDates:
    def test_pattern_translation(self):
        assert to_strptime("dd.MM.yyyy") == "%d.%m.%Y"
        assert to_strptime("yyyy-MM-dd HH:mm:ss") == "%Y-%m-%d %H:%M:%S"

    def test_parse_date(self):
        assert parse_date("15.01.2024", "dd.MM.yyyy") == dt.date(2024, 1, 15)
        assert parse_date(" 2024-01-15 ", "yyyy-MM-dd") == dt.date(2024, 1, 15)
        assert parse_date("15.01.2024", "yyyy-MM-dd") is None
        assert parse_date("", "yyyy-MM-dd") is None

    def test_guess_date_format(self):
        values = ["Datum", "15.01.2024", "20.01.2024"]
        assert guess_date_format(values) == "dd.MM.yyyy"

    def test_ambiguous_values_prefer_earlier_pattern(self):
        assert guess_date_format(["01/02/2024"]) == "MM/dd/yyyy"

    def test_guess_date_format_without_dates(self):
        assert guess_date_format(["foo", "bar"]) is None

    def test_date_format_mismatch(self):
        assert date_format_mismatch(["15.01.2024", "2024-01-16"], "dd.MM.yyyy") is True
        assert date_format_mismatch(["15.01.2024", ""], "dd.MM.yyyy") is False

    def test_guess_date_column(self):
        rows = [["Ref", "Date"], ["Rent", "2024-01-15"], ["Shop", "2024-01-16"]]
        assert guess_date_column(rows) == 1


class TestGuessAmountColumn:
    def test_comma_separator(self):
        rows = [
            ["Datum", "Verwendungszweck", "Betrag"],
            ["15.01.2024", "Miete Januar", "-850,00 €"],
            ["20.01.2024", "Kunde ACME Rechnung 42", "1.190,00 €"],
        ]
        assert guess_amount_column(rows, ",") == 2

    def test_dotted_dates_are_disqualified(self):
        rows = [["15.01.2024", "12"], ["16.01.2024", "13"]]
        assert guess_amount_column(rows, ",") == 1

    def test_decimal_separator_breaks_ties(self):
        rows = [["20240115", "-12,50"], ["20240116", "99,00"]]
        assert guess_amount_column(rows, ",") == 1

    def test_no_numeric_column(self):
        assert guess_amount_column([["a", "b"], ["c", "d"]], ",") is None
