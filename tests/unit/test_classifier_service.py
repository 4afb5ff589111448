"""Unit tests for the dual-basis fiscal year classifier."""

from datetime import date, datetime

import pytest

from src.models import AllocationTarget, ChargeModule
from src.services.classifier_service import ClassifiableAllocation, DualBasisClassifier
from src.services.errors import ValidationError


def dues(amount, paid_on, fiscal_year):
    return ClassifiableAllocation(
        amount=amount,
        payment_date=paid_on,
        target=AllocationTarget.BUCKET,
        module=ChargeModule.DUES,
        bucket_fiscal_year=fiscal_year,
    )


def water(amount, paid_on, fiscal_year=None):
    return ClassifiableAllocation(
        amount=amount,
        payment_date=paid_on,
        target=AllocationTarget.BUCKET,
        module=ChargeModule.WATER,
        bucket_fiscal_year=fiscal_year,
    )


def credit(amount, paid_on):
    return ClassifiableAllocation(amount=amount, payment_date=paid_on, target=AllocationTarget.CREDIT)


@pytest.fixture
def classifier():
    """Fiscal year starting in July; dues on accrual basis."""
    return DualBasisClassifier(fiscal_year_start_month=7, accrual_modules=["dues"])


class TestAccrualRule:
    """Dues count for their bucket's fiscal year regardless of payment date."""

    def test_prepaid_dues_count_for_bucket_year_only(self, classifier):
        allocations = [dues(5000, date(2025, 6, 15), 2026)]

        assert classifier.classify(allocations, 2026).counted_total == 5000
        assert classifier.classify(allocations, 2025).counted_total == 0

    def test_late_dues_count_for_bucket_year(self, classifier):
        allocations = [dues(3000, date(2026, 8, 1), 2026)]

        result_2026 = classifier.classify(allocations, 2026)
        result_2027 = classifier.classify(allocations, 2027)

        assert result_2026.accrual_total == 3000
        assert result_2026.received_total == 0
        assert result_2027.counted_total == 0
        assert result_2027.received_total == 3000

    def test_accrual_without_bucket_year_rejected(self, classifier):
        with pytest.raises(ValidationError):
            classifier.classify([dues(100, date(2025, 8, 1), None)], 2026)


class TestCashRule:
    """Credit and water count for the year the money arrived."""

    def test_credit_counts_by_payment_date(self, classifier):
        allocations = [credit(6000, date(2025, 7, 1)), credit(-700, date(2026, 6, 30))]

        result = classifier.classify(allocations, 2026)

        assert result.cash_total == 5300
        assert result.by_category == {"credit": 5300}
        assert classifier.classify(allocations, 2025).counted_total == 0

    def test_water_is_cash_by_default(self, classifier):
        allocations = [water(1200, date(2025, 6, 30), fiscal_year=2026)]

        assert classifier.classify(allocations, 2026).counted_total == 0
        assert classifier.classify(allocations, 2025).counted_total == 1200

    def test_water_can_be_configured_as_accrual(self):
        classifier = DualBasisClassifier(7, accrual_modules=["dues", "water"])
        allocations = [water(1200, date(2025, 6, 30), fiscal_year=2026)]

        assert classifier.classify(allocations, 2026).accrual_total == 1200

    def test_datetime_payment_date_uses_its_calendar_day(self, classifier):
        allocations = [credit(900, datetime(2026, 6, 30, 23, 59)), credit(400, datetime(2026, 7, 1, 0, 1))]

        assert classifier.classify(allocations, 2026).cash_total == 900
        assert classifier.classify(allocations, 2027).cash_total == 400


class TestTotals:
    def test_counted_differs_from_received(self, classifier):
        allocations = [
            dues(4000, date(2025, 6, 20), 2026),
            dues(1000, date(2025, 6, 20), 2025),
            credit(500, date(2025, 6, 20)),
        ]

        result = classifier.classify(allocations, 2025)

        assert result.received_total == 5500
        assert result.accrual_total == 1000
        assert result.cash_total == 500
        assert result.counted_total == 1500
        assert result.by_category == {"dues": 1000, "credit": 500}
        assert result.fiscal_year == 2025

    def test_default_accrual_modules(self):
        classifier = DualBasisClassifier()

        assert classifier.accrual_modules == frozenset({ChargeModule.DUES})

    def test_empty_input(self, classifier):
        result = classifier.classify([], 2026)

        assert result.counted_total == 0
        assert result.by_category == {}
