import logging
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Response, status

from .errors import ConflictError, NotFoundError, PaymentReconciliationError, ValidationError
from .middleware import get_current_user, get_fee_service, is_admin, require_roles
from .models import FeeCategory, PaymentStatus, UserRole
from .schemas import (
    CurrentUser,
    FeeStatisticsOut,
    LateFeeRunOut,
    PaymentRequest,
    PaymentResult,
    StudentFeeCreateRequest,
    StudentFeeOut,
    StudentFeeUpdateRequest,
)
from .services import FeeService, filter_fees


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/student-fees", tags=["Student Fees"])


@contextmanager
def fee_errors() -> Iterator[None]:
    try:
        yield
    except ValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except NotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except ConflictError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except PaymentReconciliationError as exc:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail={
                "error": str(exc),
                "transaction_id": exc.transaction_id,
                "refunded": exc.refunded,
            },
        ) from exc


def _can_access_student(service: FeeService, user: CurrentUser, student_id: str) -> bool:
    if is_admin(user):
        return True
    if user.role == UserRole.STUDENT:
        student = service.students.get_by_user_id(user.id)
        return student is not None and student.id == student_id
    if user.role == UserRole.PARENT:
        return service.students.is_parent_of(user.id, student_id)
    if user.role == UserRole.FACULTY:
        return service.students.is_assigned_to_faculty(user.id, student_id)
    return False


def _ensure_access(service: FeeService, user: CurrentUser, student_id: str) -> None:
    if not _can_access_student(service, user, student_id):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access to this fee record is not allowed")


@router.get("", response_model=list[StudentFeeOut])
def list_fees(
    category: FeeCategory | None = None,
    term: str | None = None,
    payment_status: PaymentStatus | None = None,
    start_date: date | None = None,
    end_date: date | None = None,
    service: FeeService = Depends(get_fee_service),
    current_user: CurrentUser = Depends(get_current_user),
):
    if is_admin(current_user):
        fees = service.list_all()
    elif current_user.role == UserRole.FACULTY:
        fees = service.list_for_faculty(current_user.id)
    elif current_user.role == UserRole.STUDENT:
        fees = service.list_for_user(current_user.id)
    elif current_user.role == UserRole.PARENT:
        fees = service.list_for_parent(current_user.id)
    else:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient role privileges")

    return filter_fees(
        fees,
        category=category,
        term=term,
        status=payment_status,
        start_date=start_date,
        end_date=end_date,
    )


@router.get("/overdue", response_model=list[StudentFeeOut])
def list_overdue_fees(
    service: FeeService = Depends(get_fee_service),
    _: CurrentUser = Depends(require_roles(UserRole.ADMIN)),
):
    return service.list_overdue()


@router.get("/statistics/{student_id}", response_model=FeeStatisticsOut)
def student_fee_statistics(
    student_id: str,
    service: FeeService = Depends(get_fee_service),
    current_user: CurrentUser = Depends(get_current_user),
):
    _ensure_access(service, current_user, student_id)
    with fee_errors():
        return service.statistics(student_id)


@router.post("/calculate-late-fees", response_model=LateFeeRunOut)
def calculate_late_fees(
    service: FeeService = Depends(get_fee_service),
    current_user: CurrentUser = Depends(require_roles(UserRole.ADMIN)),
):
    updated = service.calculate_late_fees()
    logger.info(f"Late fee run by {current_user.id} updated {updated} records")
    return LateFeeRunOut(message="Late fees calculated successfully", updated_count=updated)


@router.get("/{fee_id}", response_model=StudentFeeOut)
def get_fee(
    fee_id: str,
    service: FeeService = Depends(get_fee_service),
    current_user: CurrentUser = Depends(get_current_user),
):
    with fee_errors():
        fee = service.get(fee_id)
    _ensure_access(service, current_user, fee.student_id)
    return fee


@router.post("", response_model=StudentFeeOut, status_code=status.HTTP_201_CREATED)
def create_fee(
    payload: StudentFeeCreateRequest,
    service: FeeService = Depends(get_fee_service),
    _: CurrentUser = Depends(require_roles(UserRole.ADMIN)),
):
    with fee_errors():
        return service.create(
            student_id=payload.student_id,
            category=payload.category,
            term=payload.term,
            total_amount=payload.total_amount,
            due_date=payload.due_date,
            notes=payload.notes,
        )


@router.put("/{fee_id}", response_model=StudentFeeOut)
def update_fee(
    fee_id: str,
    payload: StudentFeeUpdateRequest,
    service: FeeService = Depends(get_fee_service),
    _: CurrentUser = Depends(require_roles(UserRole.ADMIN)),
):
    with fee_errors():
        return service.update(fee_id, **payload.model_dump(exclude_unset=True))


@router.delete("/{fee_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_fee(
    fee_id: str,
    service: FeeService = Depends(get_fee_service),
    _: CurrentUser = Depends(require_roles(UserRole.ADMIN)),
):
    with fee_errors():
        service.delete(fee_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{fee_id}/pay", response_model=PaymentResult)
def pay_fee(
    fee_id: str,
    payload: PaymentRequest,
    service: FeeService = Depends(get_fee_service),
    current_user: CurrentUser = Depends(require_roles(UserRole.STUDENT, UserRole.PARENT)),
):
    with fee_errors():
        fee = service.get(fee_id)
        _ensure_access(service, current_user, fee.student_id)
        result = service.make_payment(
            fee_id,
            payload.amount,
            payment_method=payload.payment_method,
            reference_number=payload.reference_number,
            notes=payload.notes,
        )

    if not result.success:
        logger.warning(f"Payment failed for fee {fee_id}: {result.error_message}")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=result.error_message)
    return result
