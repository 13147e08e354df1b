from datetime import date

from sqlalchemy import select
from sqlalchemy.orm import Session

from .models import FacultyStudent, FeeCategory, ParentStudent, PaymentStatus, Student, StudentFee


class StudentRepository:
    def __init__(self, db: Session):
        self.db = db

    def get(self, student_id: str) -> Student | None:
        return self.db.query(Student).filter(Student.id == student_id).first()

    def exists(self, student_id: str) -> bool:
        return self.get(student_id) is not None

    def get_by_user_id(self, user_id: str) -> Student | None:
        return self.db.query(Student).filter(Student.user_id == user_id).first()

    def is_parent_of(self, parent_user_id: str, student_id: str) -> bool:
        link = (
            self.db.query(ParentStudent)
            .filter(ParentStudent.parent_user_id == parent_user_id, ParentStudent.student_id == student_id)
            .first()
        )
        return link is not None

    def is_assigned_to_faculty(self, faculty_user_id: str, student_id: str) -> bool:
        link = (
            self.db.query(FacultyStudent)
            .filter(FacultyStudent.faculty_user_id == faculty_user_id, FacultyStudent.student_id == student_id)
            .first()
        )
        return link is not None


class FeeRepository:
    def __init__(self, db: Session):
        self.db = db

    def _ordered(self):
        return self.db.query(StudentFee).order_by(StudentFee.due_date, StudentFee.id)

    def get_by_id(self, fee_id: str, *, for_update: bool = False) -> StudentFee | None:
        query = self.db.query(StudentFee).filter(StudentFee.id == fee_id)
        if for_update:
            query = query.with_for_update()
        return query.first()

    def exists(self, fee_id: str) -> bool:
        return self.db.query(StudentFee.id).filter(StudentFee.id == fee_id).first() is not None

    def get_all(self) -> list[StudentFee]:
        return self._ordered().all()

    def get_by_student_id(self, student_id: str) -> list[StudentFee]:
        return self._ordered().filter(StudentFee.student_id == student_id).all()

    def get_by_category(self, category: FeeCategory) -> list[StudentFee]:
        return self._ordered().filter(StudentFee.category == category).all()

    def get_by_term(self, term: str) -> list[StudentFee]:
        return self._ordered().filter(StudentFee.term == term).all()

    def get_by_status(self, status: PaymentStatus) -> list[StudentFee]:
        return self._ordered().filter(StudentFee.payment_status == status).all()

    def get_by_due_range(self, start: date, end: date) -> list[StudentFee]:
        return self._ordered().filter(StudentFee.due_date >= start, StudentFee.due_date <= end).all()

    def get_overdue(self, as_of: date) -> list[StudentFee]:
        return (
            self._ordered()
            .filter(StudentFee.due_date < as_of, StudentFee.payment_status != PaymentStatus.PAID)
            .all()
        )

    def get_overdue_ids(self, as_of: date) -> list[str]:
        rows = (
            self.db.query(StudentFee.id)
            .filter(StudentFee.due_date < as_of, StudentFee.payment_status != PaymentStatus.PAID)
            .order_by(StudentFee.due_date, StudentFee.id)
            .all()
        )
        return [row.id for row in rows]

    def get_by_parent_user_id(self, parent_user_id: str) -> list[StudentFee]:
        student_ids = select(ParentStudent.student_id).where(ParentStudent.parent_user_id == parent_user_id)
        return self._ordered().filter(StudentFee.student_id.in_(student_ids)).all()

    def get_by_faculty_user_id(self, faculty_user_id: str) -> list[StudentFee]:
        student_ids = select(FacultyStudent.student_id).where(FacultyStudent.faculty_user_id == faculty_user_id)
        return self._ordered().filter(StudentFee.student_id.in_(student_ids)).all()

    def create(self, fee: StudentFee) -> StudentFee:
        self.db.add(fee)
        self.db.commit()
        self.db.refresh(fee)
        return fee

    def update(self, fee: StudentFee) -> StudentFee:
        self.db.commit()
        self.db.refresh(fee)
        return fee

    def delete(self, fee: StudentFee) -> None:
        self.db.delete(fee)
        self.db.commit()
