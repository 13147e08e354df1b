"""In-memory view of one fee obligation.

``FeeLedger`` decrypts a ``StudentFee`` row once, lets callers change the
inputs (total, paid, due date) and derives fine, amount due and status in
``recompute``. Derived values have no setters. ``store`` writes every field
back to the row in one go so a flush never sees a new fine next to an old
status.
"""

from datetime import date, datetime
from decimal import Decimal

from . import calculator
from .calculator import DEFAULT_POLICY, LateFeePolicy
from .codec import Codec, quantize
from .errors import ValidationError
from .models import PaymentStatus, StudentFee


class FeeLedger:
    def __init__(
        self,
        *,
        total_amount: Decimal,
        due_date: date,
        amount_paid: Decimal = Decimal("0"),
        fine_amount: Decimal = Decimal("0"),
        last_payment_date: datetime | None = None,
        policy: LateFeePolicy = DEFAULT_POLICY,
    ):
        self._total = quantize(total_amount)
        self._paid = quantize(amount_paid)
        self._fine = quantize(fine_amount)
        self._due_date = due_date
        self._last_payment_date = last_payment_date
        self._policy = policy
        self._amount_due = calculator.amount_due(self._total, self._paid, self._fine)
        self._status = calculator.payment_status(self._total, self._paid, self._fine)

    @classmethod
    def load(cls, row: StudentFee, codec: Codec, policy: LateFeePolicy = DEFAULT_POLICY) -> "FeeLedger":
        ledger = cls(
            total_amount=codec.decode(row.encrypted_total_amount),
            amount_paid=codec.decode(row.encrypted_amount_paid),
            fine_amount=codec.decode(row.encrypted_fine_amount),
            due_date=row.due_date,
            last_payment_date=row.last_payment_date,
            policy=policy,
        )
        # Keep what was stored so callers can tell whether a recompute changed anything.
        ledger._amount_due = codec.decode(row.encrypted_amount_due)
        ledger._status = row.payment_status
        return ledger

    @property
    def total_amount(self) -> Decimal:
        return self._total

    @property
    def amount_paid(self) -> Decimal:
        return self._paid

    @property
    def fine_amount(self) -> Decimal:
        return self._fine

    @property
    def amount_due(self) -> Decimal:
        return self._amount_due

    @property
    def payment_status(self) -> PaymentStatus:
        return self._status

    @property
    def due_date(self) -> date:
        return self._due_date

    @property
    def last_payment_date(self) -> datetime | None:
        return self._last_payment_date

    def is_overdue(self, as_of: date | None = None) -> bool:
        return self._status != PaymentStatus.PAID and calculator.is_overdue(self._due_date, as_of)

    def days_overdue(self, as_of: date | None = None) -> int:
        return calculator.days_overdue(self._due_date, as_of) if self.is_overdue(as_of) else 0

    def fresh_fine(self, as_of: date | None = None) -> Decimal:
        return quantize(calculator.late_fee(self._due_date, as_of, self._policy))

    def revise_total(self, total_amount: Decimal, *, as_of: date | None = None) -> None:
        if total_amount <= 0:
            raise ValidationError("Total amount must be greater than zero.")
        self._total = quantize(total_amount)
        self.recompute(as_of)

    def reschedule(self, due_date: date, *, as_of: date | None = None) -> None:
        self._due_date = due_date
        self.recompute(as_of)

    def correct_paid(self, amount_paid: Decimal, *, as_of: date | None = None) -> None:
        amount_paid = quantize(amount_paid)
        if amount_paid < self._paid:
            raise ValidationError("Amount paid cannot be reduced; issue a refund instead.")
        self._paid = amount_paid
        self.recompute(as_of)

    def apply_payment(self, amount: Decimal, *, paid_at: datetime, as_of: date | None = None) -> None:
        amount = quantize(amount)
        if amount <= 0:
            raise ValidationError("Payment amount must be greater than zero.")
        ceiling = self._total + self.fresh_fine(as_of)
        if self._paid + amount > ceiling:
            raise ValidationError("Payment amount cannot exceed the amount due.")
        self._paid += amount
        self._last_payment_date = paid_at
        self.recompute(as_of)

    def recompute(self, as_of: date | None = None) -> bool:
        fine = self.fresh_fine(as_of)
        due = quantize(calculator.amount_due(self._total, self._paid, fine))
        status = calculator.payment_status(self._total, self._paid, fine)
        changed = (fine, due, status) != (self._fine, self._amount_due, self._status)
        self._fine, self._amount_due, self._status = fine, due, status
        return changed

    def store(self, row: StudentFee, codec: Codec) -> None:
        row.encrypted_total_amount = codec.encode(self._total)
        row.encrypted_amount_paid = codec.encode(self._paid)
        row.encrypted_fine_amount = codec.encode(self._fine)
        row.encrypted_amount_due = codec.encode(self._amount_due)
        row.payment_status = self._status
        row.due_date = self._due_date
        row.last_payment_date = self._last_payment_date
