"""Unit tests for pure statement reconstruction."""

from datetime import date
from types import SimpleNamespace

import pytest

from src.models import AllocationTarget, ChargeModule
from src.services.errors import ValidationError
from src.services.statement_service import (
    LineKind,
    StatementCache,
    StatementWindow,
    reconstruct_statement,
)


def bucket(bucket_id, period_date, base, penalty=0, module=ChargeModule.DUES, reference=None):
    return SimpleNamespace(
        id=bucket_id,
        module=module,
        period_date=period_date,
        base_amount=base,
        penalty_amount=penalty,
        reference=reference,
    )


def payment(payment_id, payment_date, lines, reference=None):
    allocations = [
        SimpleNamespace(target=AllocationTarget.BUCKET, bucket_id=bucket_id, amount=amount)
        for bucket_id, amount in lines
    ]
    return SimpleNamespace(id=payment_id, payment_date=payment_date, reference=reference, allocations=allocations)


def credit_line(amount):
    return SimpleNamespace(target=AllocationTarget.CREDIT, bucket_id=None, amount=amount)


@pytest.fixture
def history():
    buckets = [
        bucket(1, date(2026, 1, 1), 4800, 200, reference="2026-01"),
        bucket(2, date(2026, 2, 1), 4800),
        bucket(3, date(2026, 1, 15), 1500, module=ChargeModule.WATER),
    ]
    payments = [
        payment(10, date(2026, 1, 10), [(1, 3000)]),
        payment(11, date(2026, 2, 1), [(1, 2000), (3, 1500)], reference="SPEI 4411"),
    ]
    return buckets, payments


class TestReconstruct:
    def test_lines_in_date_order_with_running_balance(self, history):
        buckets, payments = history
        statement = reconstruct_statement(buckets, payments, credit_balance=300)

        rows = [(line.date, line.kind, line.amount, line.running_balance) for line in statement.lines]
        assert rows == [
            (date(2026, 1, 1), LineKind.CHARGE, 5000, 5000),
            (date(2026, 1, 10), LineKind.PAYMENT, 3000, 2000),
            (date(2026, 1, 15), LineKind.CHARGE, 1500, 3500),
            (date(2026, 2, 1), LineKind.CHARGE, 4800, 8300),
            (date(2026, 2, 1), LineKind.PAYMENT, 3500, 4800),
        ]
        assert statement.credit_balance == 300

    def test_statement_identity(self, history):
        buckets, payments = history
        statement = reconstruct_statement(buckets, payments)

        assert statement.total_due == 11300
        assert statement.total_paid == 6500
        assert statement.final_balance == statement.total_due - statement.total_paid == statement.total_outstanding

    def test_descriptions(self, history):
        buckets, payments = history
        statement = reconstruct_statement(buckets, payments)

        descriptions = [line.description for line in statement.lines]
        assert descriptions[0] == "Dues 2026-01"
        assert descriptions[1] == "Payment #10"
        assert descriptions[2] == "Water bill 2026-01-15"
        assert descriptions[4] == "Payment SPEI 4411"

    def test_module_scope(self, history):
        buckets, payments = history
        statement = reconstruct_statement(buckets, payments, modules=["water"])

        assert [(line.kind, line.amount) for line in statement.lines] == [
            (LineKind.CHARGE, 1500),
            (LineKind.PAYMENT, 1500),
        ]
        assert statement.final_balance == 0

    def test_window_is_inclusive(self, history):
        buckets, payments = history
        statement = reconstruct_statement(
            buckets, payments, window=StatementWindow(date(2026, 1, 10), date(2026, 2, 1))
        )

        assert [line.source_id for line in statement.lines] == [10, 3, 2, 11]
        assert statement.lines[0].running_balance == -3000
        assert statement.final_balance == statement.total_outstanding

    def test_credit_lines_are_not_payments(self):
        buckets = [bucket(1, date(2026, 1, 1), 4000)]
        paid = payment(5, date(2026, 1, 5), [(1, 4000)])
        paid.allocations.append(credit_line(6000))

        statement = reconstruct_statement(buckets, [paid])

        assert statement.total_paid == 4000
        assert statement.final_balance == 0

    def test_payment_without_scoped_allocations_omitted_under_scope(self):
        buckets = [bucket(1, date(2026, 1, 1), 4000)]
        banked = payment(5, date(2026, 1, 5), [])
        banked.allocations.append(credit_line(2500))

        unscoped = reconstruct_statement(buckets, [banked])
        scoped = reconstruct_statement(buckets, [banked], modules=["dues"])

        assert [line.amount for line in unscoped.lines if line.kind == LineKind.PAYMENT] == [0]
        assert [line.kind for line in scoped.lines] == [LineKind.CHARGE]

    def test_same_day_ties_break_by_id(self):
        buckets = [bucket(8, date(2026, 1, 1), 100), bucket(2, date(2026, 1, 1), 200)]

        statement = reconstruct_statement(buckets, [])

        assert [line.source_id for line in statement.lines] == [2, 8]

    def test_deterministic(self, history):
        buckets, payments = history

        assert reconstruct_statement(buckets, payments) == reconstruct_statement(buckets, payments)

    def test_empty(self):
        statement = reconstruct_statement([], [])

        assert statement.lines == ()
        assert statement.final_balance == 0


class TestStatementWindow:
    def test_open_ended(self):
        window = StatementWindow(start=date(2026, 1, 1))

        assert window.contains(date(2030, 1, 1))
        assert not window.contains(date(2025, 12, 31))

    def test_rejects_inverted_window(self):
        with pytest.raises(ValidationError):
            StatementWindow(date(2026, 2, 1), date(2026, 1, 1))


class TestStatementCache:
    def test_lru_eviction(self):
        cache = StatementCache(maxsize=2)
        cache.put(("a",), "A")
        cache.put(("b",), "B")
        cache.get(("a",))
        cache.put(("c",), "C")

        assert cache.get(("b",)) is None
        assert cache.get(("a",)) == "A"
        assert cache.get(("c",)) == "C"
        assert len(cache) == 2

    def test_disabled_cache_stores_nothing(self):
        cache = StatementCache(maxsize=0)
        cache.put(("a",), "A")

        assert cache.get(("a",)) is None
        assert cache.misses == 1
