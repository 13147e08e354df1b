import enum
import uuid
from datetime import date, datetime, timezone

from sqlalchemy import Date, DateTime, Enum, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


class UserRole(str, enum.Enum):
    ADMIN = "Admin"
    FACULTY = "Faculty"
    STUDENT = "Student"
    PARENT = "Parent"
    DEV_AUTH = "DevAuth"


class FeeCategory(str, enum.Enum):
    TUITION = "Tuition"
    EXAM = "Exam"
    TRANSPORT = "Transport"
    LIBRARY = "Library"
    MISC = "Misc"


class PaymentStatus(str, enum.Enum):
    PENDING = "Pending"
    PARTIAL = "Partial"
    PAID = "Paid"
    OVERDUE = "Overdue"


class Student(Base):
    __tablename__ = "students"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    roll_number: Mapped[str] = mapped_column(String(50), unique=True, nullable=False, index=True)
    user_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)


class ParentStudent(Base):
    __tablename__ = "parent_students"
    __table_args__ = (UniqueConstraint("parent_user_id", "student_id", name="uq_parent_student"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    parent_user_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    student_id: Mapped[str] = mapped_column(ForeignKey("students.id", ondelete="CASCADE"), nullable=False, index=True)


class FacultyStudent(Base):
    __tablename__ = "faculty_students"
    __table_args__ = (UniqueConstraint("faculty_user_id", "student_id", name="uq_faculty_student"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    faculty_user_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    student_id: Mapped[str] = mapped_column(ForeignKey("students.id", ondelete="CASCADE"), nullable=False, index=True)


class StudentFee(Base):
    __tablename__ = "student_fees"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    student_id: Mapped[str] = mapped_column(ForeignKey("students.id"), nullable=False, index=True)
    category: Mapped[FeeCategory] = mapped_column(Enum(FeeCategory), nullable=False, index=True)
    term: Mapped[str] = mapped_column(String(20), nullable=False, index=True)

    # Ciphertext produced by the configured codec; never plaintext.
    encrypted_total_amount: Mapped[str] = mapped_column(String(255), nullable=False)
    encrypted_amount_paid: Mapped[str] = mapped_column(String(255), nullable=False)
    encrypted_amount_due: Mapped[str] = mapped_column(String(255), nullable=False)
    encrypted_fine_amount: Mapped[str] = mapped_column(String(255), nullable=False)

    payment_status: Mapped[PaymentStatus] = mapped_column(
        Enum(PaymentStatus), default=PaymentStatus.PENDING, nullable=False, index=True
    )
    due_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    last_payment_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    notes: Mapped[str | None] = mapped_column(String(500), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )
    version_id: Mapped[int] = mapped_column(Integer, nullable=False)

    student: Mapped[Student] = relationship("Student")

    __mapper_args__ = {"version_id_col": version_id}
