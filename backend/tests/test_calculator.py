from datetime import date, timedelta
from decimal import Decimal

from backend.fees_module import calculator
from backend.fees_module.calculator import LateFeePolicy
from backend.fees_module.models import PaymentStatus


DUE = date(2024, 3, 31)


def test_not_overdue_on_or_before_due_date():
    assert calculator.is_overdue(DUE, DUE) is False
    assert calculator.is_overdue(DUE, DUE - timedelta(days=1)) is False
    assert calculator.days_overdue(DUE, DUE) == 0
    assert calculator.late_fee(DUE, DUE) == 0


def test_overdue_counts_whole_days():
    assert calculator.is_overdue(DUE, DUE + timedelta(days=1)) is True
    assert calculator.days_overdue(DUE, DUE + timedelta(days=12)) == 12


def test_late_fee_base_plus_daily():
    assert calculator.late_fee(DUE, DUE + timedelta(days=1)) == Decimal("110")
    assert calculator.late_fee(DUE, DUE + timedelta(days=5)) == Decimal("150")


def test_late_fee_caps_at_maximum():
    assert calculator.late_fee(DUE, DUE + timedelta(days=40)) == Decimal("500")
    assert calculator.late_fee(DUE, DUE + timedelta(days=400)) == Decimal("500")


def test_late_fee_stays_within_bounds():
    for offset in range(-30, 120):
        fee = calculator.late_fee(DUE, DUE + timedelta(days=offset))
        assert Decimal("0") <= fee <= Decimal("500")


def test_custom_policy():
    policy = LateFeePolicy(base_fee=Decimal("50"), daily_fee=Decimal("5"), max_fee=Decimal("60"))
    assert calculator.late_fee(DUE, DUE + timedelta(days=1), policy) == Decimal("55")
    assert calculator.late_fee(DUE, DUE + timedelta(days=10), policy) == Decimal("60")


def test_amount_due_never_negative():
    for total in (Decimal("0"), Decimal("100"), Decimal("5000")):
        for paid in (Decimal("0"), Decimal("50"), Decimal("6000")):
            for fine in (Decimal("0"), Decimal("150")):
                assert calculator.amount_due(total, paid, fine) >= 0


def test_amount_due_is_non_increasing_in_paid():
    total, fine = Decimal("1000"), Decimal("120")
    previous = None
    for paid in range(0, 1300, 50):
        due = calculator.amount_due(total, Decimal(paid), fine)
        if previous is not None:
            assert due <= previous
        previous = due


def test_amount_due_includes_fine():
    assert calculator.amount_due(Decimal("5000"), Decimal("0"), Decimal("150")) == Decimal("5150")


def test_payment_status_tie_break():
    assert calculator.payment_status(Decimal("100"), Decimal("100"), Decimal("0")) == PaymentStatus.PAID
    assert calculator.payment_status(Decimal("100"), Decimal("50"), Decimal("0")) == PaymentStatus.PARTIAL
    assert calculator.payment_status(Decimal("100"), Decimal("0"), Decimal("50")) == PaymentStatus.OVERDUE
    assert calculator.payment_status(Decimal("100"), Decimal("0"), Decimal("0")) == PaymentStatus.PENDING


def test_partial_payment_wins_over_overdue():
    assert calculator.payment_status(Decimal("100"), Decimal("10"), Decimal("50")) == PaymentStatus.PARTIAL


def test_paid_requires_fine_covered():
    assert calculator.payment_status(Decimal("100"), Decimal("100"), Decimal("50")) == PaymentStatus.PARTIAL
    assert calculator.payment_status(Decimal("100"), Decimal("150"), Decimal("50")) == PaymentStatus.PAID
