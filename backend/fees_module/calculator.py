from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from .config import settings
from .models import PaymentStatus


ZERO = Decimal("0")


@dataclass(frozen=True)
class LateFeePolicy:
    base_fee: Decimal = Decimal("100")
    daily_fee: Decimal = Decimal("10")
    max_fee: Decimal = Decimal("500")


DEFAULT_POLICY = LateFeePolicy(
    base_fee=settings.late_fee_base,
    daily_fee=settings.late_fee_daily,
    max_fee=settings.late_fee_max,
)


def is_overdue(due_date: date, as_of: date | None = None) -> bool:
    today = as_of or date.today()
    return today > due_date


def days_overdue(due_date: date, as_of: date | None = None) -> int:
    today = as_of or date.today()
    if today <= due_date:
        return 0
    return (today - due_date).days


def late_fee(due_date: date, as_of: date | None = None, policy: LateFeePolicy = DEFAULT_POLICY) -> Decimal:
    days = days_overdue(due_date, as_of)
    if days == 0:
        return ZERO
    return min(policy.base_fee + days * policy.daily_fee, policy.max_fee)


def amount_due(total: Decimal, paid: Decimal, fine: Decimal) -> Decimal:
    return max(total + fine - paid, ZERO)


def payment_status(total: Decimal, paid: Decimal, fine: Decimal) -> PaymentStatus:
    # Order matters: an unpaid fee carrying a fine is Overdue, not Pending.
    if paid >= total + fine:
        return PaymentStatus.PAID
    if paid > 0:
        return PaymentStatus.PARTIAL
    if fine > 0:
        return PaymentStatus.OVERDUE
    return PaymentStatus.PENDING
