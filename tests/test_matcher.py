"""
Tests for automatic invoice <-> statement matching.

Auto-link must never guess: ambiguous statements stay unlinked and every
invoice is used at most once per pass.
"""

import datetime as dt
import pytest
from src.models.invoice import Direction, Invoice, InvoiceStatus
from src.models.statement import Statement
from src.services.events import EventPublisher
from src.services.matcher import auto_link, auto_link_ledger, candidates_for, is_match, within_window
from src.services.storage import InMemoryLedger

JAN_15 = dt.date(2024, 1, 15)


def make_invoice(total=119.0, direction=Direction.INCOMING, currency="€", date=JAN_15, **kwargs):
    return Invoice(
        total_amount=total,
        direction=direction,
        currency=currency,
        date=date,
        status=kwargs.pop("status", InvoiceStatus.PROCESSED),
        **kwargs,
    )


def make_statement(amount=119.0, currency="€", date=JAN_15, **kwargs):
    return Statement(amount=amount, currency=currency, date=date, **kwargs)


class TestIsMatch:
    def test_exact_match(self):
        assert is_match(make_statement(), make_invoice()) is True

    def test_outgoing_invoice_matches_negative_amount(self):
        invoice = make_invoice(direction=Direction.OUTGOING)
        assert is_match(make_statement(amount=-119.0), invoice) is True
        assert is_match(make_statement(amount=119.0), invoice) is False

    def test_no_rounding_tolerance(self):
        assert is_match(make_statement(amount=119.01), make_invoice()) is False

    def test_currency_must_match_after_normalization(self):
        assert is_match(make_statement(currency="eur"), make_invoice(currency=" EUR ")) is True
        assert is_match(make_statement(currency="$"), make_invoice(currency="€")) is False
        assert is_match(make_statement(currency=None), make_invoice(currency=None)) is False

    def test_date_window(self):
        assert is_match(make_statement(date=JAN_15 + dt.timedelta(days=7)), make_invoice()) is True
        assert is_match(make_statement(date=JAN_15 - dt.timedelta(days=8)), make_invoice()) is False

    def test_verified_invoices_never_match(self):
        invoice = make_invoice(status=InvoiceStatus.STATEMENT_VERIFIED)
        assert is_match(make_statement(), invoice) is False

    def test_missing_fields(self):
        assert is_match(make_statement(), make_invoice(date=None)) is False
        assert is_match(make_statement(), make_invoice(total=None)) is False


def test_within_window_ignores_time_of_day():
    late = dt.datetime(2024, 1, 22, 23, 59)
    assert within_window(late, JAN_15, 7) is True


class TestAutoLink:
    def test_single_candidate_is_linked(self):
        statement, invoice = make_statement(), make_invoice()
        assert auto_link([statement], [invoice]) == [(statement.id, invoice.id)]

    def test_ambiguous_statement_stays_unlinked(self):
        statement = make_statement()
        assert auto_link([statement], [make_invoice(), make_invoice()]) == []

    def test_invoice_consumed_once_per_pass(self):
        first, second = make_statement(), make_statement()
        invoice = make_invoice()
        assert auto_link([first, second], [invoice]) == [(first.id, invoice.id)]

    def test_consumption_can_disambiguate_later_statements(self):
        early = make_statement(date=JAN_15 - dt.timedelta(days=7))
        late = make_statement(date=JAN_15)
        near = make_invoice(date=JAN_15 - dt.timedelta(days=7))
        far = make_invoice(date=JAN_15 + dt.timedelta(days=7))

        # late alone would match both; early consumes `near` first
        links = auto_link([early, late], [near, far])
        assert links == [(early.id, near.id), (late.id, far.id)]

    def test_already_matched_records_are_skipped(self):
        statement = make_statement(matched_invoice_id="x")
        invoice = make_invoice()
        assert auto_link([statement], [invoice]) == []

        linked_invoice = make_invoice(matched_statement_id="y")
        assert auto_link([make_statement()], [linked_invoice]) == []

    def test_deterministic(self):
        statements = [make_statement() for _ in range(3)]
        invoices = [make_invoice(total=119.0), make_invoice(total=50.0)]
        assert auto_link(statements, invoices) == auto_link(statements, invoices)


class TestAutoLinkLedger:
    def test_links_without_advancing_status(self):
        ledger = InMemoryLedger()
        statement = ledger.add_statement(make_statement())
        invoice = ledger.add_invoice(make_invoice())
        events = []
        publisher = EventPublisher()
        publisher.subscribe(events.append)

        links = auto_link_ledger(ledger, publisher)

        assert links == [(statement.id, invoice.id)]
        assert statement.matched_invoice_id == invoice.id
        assert invoice.matched_statement_id == statement.id
        assert invoice.status == InvoiceStatus.PROCESSED
        assert [e.event_type for e in events] == ["StatementLinked"]
        assert events[0].automatic is True

    def test_custom_window(self):
        ledger = InMemoryLedger()
        ledger.add_statement(make_statement(date=JAN_15 + dt.timedelta(days=3)))
        ledger.add_invoice(make_invoice())
        assert auto_link_ledger(ledger, window_days=2) == []


def test_candidates_for_lists_every_match():
    """The manual picker shows all candidates, even when auto-link would skip them"""
    first, second = make_invoice(), make_invoice()
    other = make_invoice(total=50.0)
    assert candidates_for(make_statement(), [first, other, second]) == [first, second]
