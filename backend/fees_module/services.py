import logging
from collections.abc import Callable, Iterable
from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from .calculator import DEFAULT_POLICY, LateFeePolicy
from .codec import Codec, quantize
from .config import Settings, settings
from .errors import ConflictError, NotFoundError, PaymentReconciliationError, ValidationError
from .gateway import PaymentGateway, PaymentOutcome, charge_with_timeout
from .ledger import FeeLedger
from .models import FeeCategory, PaymentStatus, StudentFee
from .repository import FeeRepository, StudentRepository
from .schemas import FeeStatisticsOut, PaymentResult, StudentFeeOut


logger = logging.getLogger(__name__)


def utc_clock() -> datetime:
    return datetime.now(timezone.utc)


def filter_fees(
    fees: Iterable[StudentFeeOut],
    *,
    category: FeeCategory | None = None,
    term: str | None = None,
    status: PaymentStatus | None = None,
    start_date: date | None = None,
    end_date: date | None = None,
) -> list[StudentFeeOut]:
    result = list(fees)
    if category is not None:
        result = [fee for fee in result if fee.category == category]
    if term:
        result = [fee for fee in result if fee.term.lower() == term.lower()]
    if status is not None:
        result = [fee for fee in result if fee.payment_status == status]
    if start_date is not None:
        result = [fee for fee in result if fee.due_date >= start_date]
    if end_date is not None:
        result = [fee for fee in result if fee.due_date <= end_date]
    return result


class FeeService:
    """Fee ledger orchestration for one unit of work.

    Every write goes through ``_locked_write``: the row is re-read with a lock,
    decoded into a ``FeeLedger``, changed, recomputed and written back under
    the row's version check. A concurrent writer makes the flush fail with
    ``StaleDataError`` and the whole read-modify-write is retried.
    """

    def __init__(
        self,
        db: Session,
        *,
        codec: Codec,
        gateway: PaymentGateway,
        policy: LateFeePolicy = DEFAULT_POLICY,
        config: Settings = settings,
        clock: Callable[[], datetime] = utc_clock,
    ):
        self.db = db
        self.codec = codec
        self.gateway = gateway
        self.policy = policy
        self.config = config
        self.clock = clock
        self.fees = FeeRepository(db)
        self.students = StudentRepository(db)

    def _today(self) -> date:
        return self.clock().date()

    def _load(self, row: StudentFee) -> FeeLedger:
        return FeeLedger.load(row, self.codec, self.policy)

    def _require(self, fee_id: str) -> StudentFee:
        row = self.fees.get_by_id(fee_id)
        if row is None:
            raise NotFoundError(f"Fee record with ID '{fee_id}' not found.")
        return row

    def to_out(self, row: StudentFee) -> StudentFeeOut:
        ledger = self._load(row)
        today = self._today()
        student = row.student
        return StudentFeeOut(
            id=row.id,
            student_id=row.student_id,
            student_first_name=student.first_name if student else "Unknown",
            student_last_name=student.last_name if student else "Unknown",
            student_roll_number=student.roll_number if student else "Unknown",
            category=row.category,
            term=row.term,
            total_amount=ledger.total_amount,
            amount_paid=ledger.amount_paid,
            amount_due=ledger.amount_due,
            fine_amount=ledger.fine_amount,
            payment_status=ledger.payment_status,
            due_date=row.due_date,
            last_payment_date=row.last_payment_date,
            notes=row.notes,
            is_overdue=ledger.is_overdue(today),
            days_overdue=ledger.days_overdue(today),
            created_at=row.created_at,
            updated_at=row.updated_at,
        )

    def _locked_write(
        self, fee_id: str, mutate: Callable[[FeeLedger, StudentFee], bool]
    ) -> tuple[StudentFee, bool]:
        attempts = max(self.config.persist_retries, 1)
        for attempt in range(1, attempts + 1):
            row = self.fees.get_by_id(fee_id, for_update=True)
            if row is None:
                self.db.rollback()
                raise NotFoundError(f"Fee record with ID '{fee_id}' not found.")
            ledger = self._load(row)
            try:
                if not mutate(ledger, row):
                    self.db.rollback()
                    return row, False
            except Exception:
                self.db.rollback()
                raise
            ledger.store(row, self.codec)
            try:
                return self.fees.update(row), True
            except StaleDataError:
                self.db.rollback()
                logger.warning(f"Concurrent update on fee {fee_id}; retrying ({attempt}/{attempts})")
        raise ConflictError(f"Fee record '{fee_id}' is being modified concurrently; try again.")

    # ---- queries -------------------------------------------------------

    def get(self, fee_id: str) -> StudentFeeOut:
        return self.to_out(self._require(fee_id))

    def get_row(self, fee_id: str) -> StudentFee:
        return self._require(fee_id)

    def exists(self, fee_id: str) -> bool:
        return self.fees.exists(fee_id)

    def list_all(self) -> list[StudentFeeOut]:
        return [self.to_out(row) for row in self.fees.get_all()]

    def list_for_student(self, student_id: str) -> list[StudentFeeOut]:
        return [self.to_out(row) for row in self.fees.get_by_student_id(student_id)]

    def list_for_user(self, user_id: str) -> list[StudentFeeOut]:
        student = self.students.get_by_user_id(user_id)
        if student is None:
            return []
        return self.list_for_student(student.id)

    def list_for_parent(self, parent_user_id: str) -> list[StudentFeeOut]:
        return [self.to_out(row) for row in self.fees.get_by_parent_user_id(parent_user_id)]

    def list_for_faculty(self, faculty_user_id: str) -> list[StudentFeeOut]:
        return [self.to_out(row) for row in self.fees.get_by_faculty_user_id(faculty_user_id)]

    def list_by_category(self, category: FeeCategory) -> list[StudentFeeOut]:
        return [self.to_out(row) for row in self.fees.get_by_category(category)]

    def list_by_term(self, term: str) -> list[StudentFeeOut]:
        return [self.to_out(row) for row in self.fees.get_by_term(term)]

    def list_by_status(self, status: PaymentStatus) -> list[StudentFeeOut]:
        return [self.to_out(row) for row in self.fees.get_by_status(status)]

    def list_by_due_range(self, start: date, end: date) -> list[StudentFeeOut]:
        if start > end:
            raise ValidationError("Start date must not be after end date.")
        return [self.to_out(row) for row in self.fees.get_by_due_range(start, end)]

    def list_overdue(self) -> list[StudentFeeOut]:
        return [self.to_out(row) for row in self.fees.get_overdue(self._today())]

    def statistics(self, student_id: str) -> FeeStatisticsOut:
        if not self.students.exists(student_id):
            raise NotFoundError(f"Student with ID '{student_id}' not found.")
        ledgers = [self._load(row) for row in self.fees.get_by_student_id(student_id)]
        counts = {status: 0 for status in PaymentStatus}
        for ledger in ledgers:
            counts[ledger.payment_status] += 1
        total_fees = len(ledgers)
        rate = Decimal(counts[PaymentStatus.PAID] * 100) / total_fees if total_fees else Decimal("0")
        return FeeStatisticsOut(
            student_id=student_id,
            total_fees=total_fees,
            paid_fees=counts[PaymentStatus.PAID],
            pending_fees=counts[PaymentStatus.PENDING],
            partial_fees=counts[PaymentStatus.PARTIAL],
            overdue_fees=counts[PaymentStatus.OVERDUE],
            total_amount=sum((ledger.total_amount for ledger in ledgers), Decimal("0.00")),
            total_paid=sum((ledger.amount_paid for ledger in ledgers), Decimal("0.00")),
            total_due=sum((ledger.amount_due for ledger in ledgers), Decimal("0.00")),
            total_fines=sum((ledger.fine_amount for ledger in ledgers), Decimal("0.00")),
            payment_rate=quantize(rate),
        )

    # ---- commands ------------------------------------------------------

    def create(
        self,
        *,
        student_id: str,
        category: FeeCategory,
        term: str,
        total_amount: Decimal,
        due_date: date,
        notes: str | None = None,
    ) -> StudentFeeOut:
        today = self._today()
        if total_amount <= 0:
            raise ValidationError("Total amount must be greater than zero.")
        if due_date <= today:
            raise ValidationError("Due date must be in the future.")
        if not term or not term.strip():
            raise ValidationError("Term is required.")
        if not self.students.exists(student_id):
            raise ValidationError(f"Student with ID '{student_id}' does not exist.")

        ledger = FeeLedger(total_amount=total_amount, due_date=due_date, policy=self.policy)
        ledger.recompute(today)
        row = StudentFee(student_id=student_id, category=category, term=term.strip(), notes=notes)
        ledger.store(row, self.codec)
        row = self.fees.create(row)
        logger.info(f"Fee record created with ID: {row.id} for student {student_id}")
        return self.to_out(row)

    def update(
        self,
        fee_id: str,
        *,
        category: FeeCategory | None = None,
        term: str | None = None,
        total_amount: Decimal | None = None,
        amount_paid: Decimal | None = None,
        due_date: date | None = None,
        notes: str | None = None,
    ) -> StudentFeeOut:
        today = self._today()

        def mutate(ledger: FeeLedger, row: StudentFee) -> bool:
            if category is not None:
                row.category = category
            if term is not None:
                if not term.strip():
                    raise ValidationError("Term is required.")
                row.term = term.strip()
            if notes is not None:
                row.notes = notes
            if total_amount is not None:
                ledger.revise_total(total_amount, as_of=today)
            if amount_paid is not None:
                ledger.correct_paid(amount_paid, as_of=today)
            if due_date is not None:
                ledger.reschedule(due_date, as_of=today)
            ledger.recompute(today)
            return True

        row, _ = self._locked_write(fee_id, mutate)
        logger.info(f"Fee record updated with ID: {fee_id}")
        return self.to_out(row)

    def delete(self, fee_id: str) -> None:
        row = self._require(fee_id)
        self.fees.delete(row)
        logger.info(f"Fee record deleted with ID: {fee_id}")

    def make_payment(
        self,
        fee_id: str,
        amount: Decimal,
        *,
        payment_method: str | None = None,
        reference_number: str | None = None,
        notes: str | None = None,
    ) -> PaymentResult:
        row = self._require(fee_id)
        if amount <= 0:
            raise ValidationError("Payment amount must be greater than zero.")
        if amount != quantize(amount):
            raise ValidationError("Payment amount cannot have more than two decimal places.")
        amount = quantize(amount)

        today = self._today()
        ledger = self._load(row)
        ledger.recompute(today)
        if amount > ledger.amount_due:
            raise ValidationError("Payment amount cannot exceed the amount due.")

        metadata = {
            "feeId": row.id,
            "studentId": row.student_id,
            "feeType": row.category.value,
            "term": row.term,
        }
        if payment_method:
            metadata["paymentMethod"] = payment_method
        if reference_number:
            metadata["referenceNumber"] = reference_number
        if notes:
            metadata["notes"] = notes
        description = f"Payment for {row.category.value} fee - {row.term}"
        # No transaction or row lock may be held while the processor is called.
        self.db.rollback()

        outcome = charge_with_timeout(
            self.gateway,
            amount=amount,
            currency=self.config.currency,
            description=description,
            metadata=metadata,
            timeout=self.config.gateway_timeout_seconds,
        )
        if not outcome.success:
            if outcome.uncertain:
                logger.error(
                    f"Payment for fee {fee_id} ({amount}) has an unknown gateway state; "
                    "ledger left unchanged, check the processor before retrying"
                )
            else:
                logger.warning(f"Payment declined for fee {fee_id}: {outcome.error_message}")
            return PaymentResult(
                success=False,
                transaction_id=outcome.transaction_id,
                payment_date=outcome.timestamp,
                error_message=outcome.error_message or "Payment processing failed",
            )

        return self._record_payment(fee_id, amount, outcome)

    def _record_payment(self, fee_id: str, amount: Decimal, outcome: PaymentOutcome) -> PaymentResult:
        today = self._today()

        def mutate(ledger: FeeLedger, row: StudentFee) -> bool:
            ledger.apply_payment(amount, paid_at=outcome.timestamp, as_of=today)
            return True

        attempts = max(self.config.persist_retries, 1)
        for attempt in range(1, attempts + 1):
            try:
                row, _ = self._locked_write(fee_id, mutate)
                break
            except (NotFoundError, ValidationError, ConflictError) as exc:
                self._reconcile(fee_id, amount, outcome, reason=str(exc))
            except SQLAlchemyError as exc:
                self.db.rollback()
                failure = f"{type(exc).__name__}: {exc}"
                logger.error(f"Persisting payment for fee {fee_id} failed ({attempt}/{attempts}): {failure}")
        else:
            self._reconcile(fee_id, amount, outcome, reason=failure)

        fee = self.to_out(row)
        logger.info(
            f"Payment recorded for fee {fee_id}: {amount} (transaction {outcome.transaction_id}), "
            f"status {fee.payment_status.value}"
        )
        return PaymentResult(
            success=True,
            transaction_id=outcome.transaction_id,
            amount_paid=amount,
            new_amount_due=fee.amount_due,
            new_payment_status=fee.payment_status,
            payment_date=outcome.timestamp,
            updated_fee=fee,
        )

    def _reconcile(self, fee_id: str, amount: Decimal, outcome: PaymentOutcome, *, reason: str) -> None:
        try:
            refunded = self.gateway.refund_payment(outcome.transaction_id, amount)
        except Exception as exc:
            logger.error(f"Compensating refund for {outcome.transaction_id} raised: {exc}")
            refunded = False
        logger.critical(
            f"Payment {outcome.transaction_id} of {amount} for fee {fee_id} was captured but the ledger "
            f"was not updated ({reason}); compensating refund {'succeeded' if refunded else 'FAILED'}"
        )
        raise PaymentReconciliationError(
            f"Payment was captured but could not be recorded: {reason}",
            fee_id=fee_id,
            transaction_id=outcome.transaction_id,
            refunded=refunded,
        )

    def calculate_late_fees(self) -> int:
        today = self._today()

        def mutate(ledger: FeeLedger, row: StudentFee) -> bool:
            if ledger.fresh_fine(today) == ledger.fine_amount:
                return False
            ledger.recompute(today)
            return True

        updated = 0
        for fee_id in self.fees.get_overdue_ids(today):
            try:
                _, changed = self._locked_write(fee_id, mutate)
            except NotFoundError:
                continue
            except ConflictError:
                logger.warning(f"Skipped late fee refresh for fee {fee_id}; it will be picked up by the next run")
                continue
            if changed:
                updated += 1

        logger.info(f"Updated late fees for {updated} overdue fee records")
        return updated
