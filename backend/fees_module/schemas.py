from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, Field

from .models import FeeCategory, PaymentStatus, UserRole


class StudentFeeCreateRequest(BaseModel):
    student_id: str = Field(min_length=1, max_length=36)
    category: FeeCategory
    term: str = Field(min_length=1, max_length=20)
    total_amount: Decimal = Field(gt=0, le=100000)
    due_date: date
    notes: str | None = Field(default=None, max_length=500)


class StudentFeeUpdateRequest(BaseModel):
    category: FeeCategory | None = None
    term: str | None = Field(default=None, min_length=1, max_length=20)
    total_amount: Decimal | None = Field(default=None, gt=0, le=100000)
    amount_paid: Decimal | None = Field(default=None, ge=0, le=100000)
    due_date: date | None = None
    notes: str | None = Field(default=None, max_length=500)


class PaymentRequest(BaseModel):
    amount: Decimal = Field(le=100000, decimal_places=2)
    payment_method: str = Field(default="Online", min_length=1, max_length=50)
    reference_number: str | None = Field(default=None, max_length=100)
    notes: str | None = Field(default=None, max_length=200)


class StudentFeeOut(BaseModel):
    id: str
    student_id: str
    student_first_name: str
    student_last_name: str
    student_roll_number: str
    category: FeeCategory
    term: str
    total_amount: Decimal
    amount_paid: Decimal
    amount_due: Decimal
    fine_amount: Decimal
    payment_status: PaymentStatus
    due_date: date
    last_payment_date: datetime | None
    notes: str | None
    is_overdue: bool
    days_overdue: int
    created_at: datetime
    updated_at: datetime


class PaymentResult(BaseModel):
    success: bool
    transaction_id: str | None = None
    amount_paid: Decimal = Decimal("0")
    new_amount_due: Decimal | None = None
    new_payment_status: PaymentStatus | None = None
    payment_date: datetime
    error_message: str | None = None
    updated_fee: StudentFeeOut | None = None

    model_config = {"frozen": True}


class FeeStatisticsOut(BaseModel):
    student_id: str
    total_fees: int
    paid_fees: int
    pending_fees: int
    partial_fees: int
    overdue_fees: int
    total_amount: Decimal
    total_paid: Decimal
    total_due: Decimal
    total_fines: Decimal
    payment_rate: Decimal


class LateFeeRunOut(BaseModel):
    message: str
    updated_count: int


class CurrentUser(BaseModel):
    id: str
    role: UserRole
    email: str | None = None
