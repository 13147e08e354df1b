import os
from datetime import date, timedelta
from decimal import Decimal
from types import SimpleNamespace

from dotenv import load_dotenv

load_dotenv(os.path.join(os.path.dirname(os.path.abspath(__file__)), ".env"))

try:
    from backend.fees_module import init_fees_module
    from backend.fees_module.database import SessionLocal
    from backend.fees_module.models import FacultyStudent, FeeCategory, ParentStudent, Student, UserRole
    from backend.fees_module.security import create_access_token
    from backend.fees_module.services import FeeService
except ImportError:
    from fees_module import init_fees_module
    from fees_module.database import SessionLocal
    from fees_module.models import FacultyStudent, FeeCategory, ParentStudent, Student, UserRole
    from fees_module.security import create_access_token
    from fees_module.services import FeeService

STUDENT_USER_ID = "user-student-demo"
PARENT_USER_ID = "user-parent-demo"
FACULTY_USER_ID = "user-faculty-demo"
ADMIN_USER_ID = "user-admin-demo"


def seed():
    state = SimpleNamespace()
    init_fees_module(state)
    db = SessionLocal()
    try:
        student = db.query(Student).filter(Student.roll_number == "DEMO-001").first()
        if student:
            print(f"Demo student already exists: {student.id}")
        else:
            student = Student(first_name="Asha", last_name="Verma", roll_number="DEMO-001", user_id=STUDENT_USER_ID)
            db.add(student)
            db.flush()
            db.add(ParentStudent(parent_user_id=PARENT_USER_ID, student_id=student.id))
            db.add(FacultyStudent(faculty_user_id=FACULTY_USER_ID, student_id=student.id))
            db.commit()
            print(f"Created demo student: {student.id}")

            service = FeeService(db, codec=state.codec, gateway=state.gateway, policy=state.late_fee_policy)
            fee = service.create(
                student_id=student.id,
                category=FeeCategory.TUITION,
                term="2024-Q1",
                total_amount=Decimal("5000"),
                due_date=date.today() + timedelta(days=30),
                notes="Demo tuition fee",
            )
            print(f"Created demo fee: {fee.id} ({fee.total_amount} due {fee.due_date})")

        print("\nBearer tokens:")
        for user_id, role in [
            (ADMIN_USER_ID, UserRole.ADMIN),
            (STUDENT_USER_ID, UserRole.STUDENT),
            (PARENT_USER_ID, UserRole.PARENT),
            (FACULTY_USER_ID, UserRole.FACULTY),
        ]:
            print(f"{role.value}: {create_access_token(subject=user_id, role=role.value)}")
    finally:
        db.close()


if __name__ == "__main__":
    seed()
