from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from backend.fees_module.codec import FixedIvAesCodec
from backend.fees_module.config import Settings
from backend.fees_module.database import Base
from backend.fees_module.gateway import MockPaymentGateway
from backend.fees_module.models import FacultyStudent, FeeCategory, ParentStudent, Student
from backend.fees_module.services import FeeService


TEST_SETTINGS = Settings(gateway_timeout_seconds=1.0, persist_retries=2, currency="INR")
START = datetime(2024, 1, 1, 9, 0, tzinfo=timezone.utc)


class FixedRandom:
    """Stands in for random.Random: always draws the same number."""

    def __init__(self, value: float):
        self.value = value

    def random(self) -> float:
        return self.value


class FakeClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, days: int) -> None:
        self.now += timedelta(days=days)


def approving_gateway() -> MockPaymentGateway:
    return MockPaymentGateway(random_source=FixedRandom(0.99), latency_seconds=0)


def declining_gateway() -> MockPaymentGateway:
    return MockPaymentGateway(random_source=FixedRandom(0.0), latency_seconds=0)


@pytest.fixture
def engine(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'fees_test.db'}",
        future=True,
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def codec():
    return FixedIvAesCodec("unit-test-secret")


@pytest.fixture
def gateway():
    return approving_gateway()


@pytest.fixture
def clock():
    return FakeClock(START)


@pytest.fixture
def make_service(codec, clock):
    def factory(session, gateway=None, config=TEST_SETTINGS):
        return FeeService(
            session,
            codec=codec,
            gateway=gateway or approving_gateway(),
            config=config,
            clock=clock,
        )

    return factory


@pytest.fixture
def service(db, gateway, make_service):
    return make_service(db, gateway)


@pytest.fixture
def student(db):
    student = Student(first_name="Asha", last_name="Verma", roll_number="R-001", user_id="user-student")
    db.add(student)
    db.flush()
    db.add(ParentStudent(parent_user_id="user-parent", student_id=student.id))
    db.add(FacultyStudent(faculty_user_id="user-faculty", student_id=student.id))
    db.commit()
    db.refresh(student)
    return student


@pytest.fixture
def fee(service, student, clock):
    return service.create(
        student_id=student.id,
        category=FeeCategory.TUITION,
        term="2024-Q1",
        total_amount=Decimal("5000"),
        due_date=clock().date() + timedelta(days=30),
        notes="Term one tuition",
    )
