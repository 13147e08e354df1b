from collections.abc import Callable

from fastapi import Depends, Header, HTTPException, Request, status
from sqlalchemy.orm import Session

from .database import get_db_session
from .models import UserRole
from .schemas import CurrentUser
from .security import AuthError, decode_access_token
from .services import FeeService


# DevAuth is the development stand-in for an administrator.
ROLE_ACCESS = {
    UserRole.DEV_AUTH: {UserRole.DEV_AUTH, UserRole.ADMIN},
    UserRole.ADMIN: {UserRole.ADMIN},
    UserRole.FACULTY: {UserRole.FACULTY},
    UserRole.STUDENT: {UserRole.STUDENT},
    UserRole.PARENT: {UserRole.PARENT},
}


def _parse_token(auth_header: str | None) -> str:
    if not auth_header:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing Authorization header")
    parts = auth_header.split(" ", 1)
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid auth scheme")
    return parts[1].strip()


def get_current_user(authorization: str | None = Header(default=None, alias="Authorization")) -> CurrentUser:
    token = _parse_token(authorization)
    try:
        payload = decode_access_token(token)
    except AuthError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc)) from exc

    try:
        role = UserRole(payload["role"])
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unknown role") from exc
    return CurrentUser(id=str(payload["sub"]), role=role, email=payload.get("email"))


def require_roles(*allowed_roles: UserRole) -> Callable:
    def dependency(current_user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        reachable = ROLE_ACCESS.get(current_user.role, {current_user.role})
        if not set(allowed_roles).intersection(reachable):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient role privileges")
        return current_user

    return dependency


def is_admin(user: CurrentUser) -> bool:
    return UserRole.ADMIN in ROLE_ACCESS.get(user.role, {user.role})


def get_fee_service(request: Request, db: Session = Depends(get_db_session)) -> FeeService:
    state = request.app.state
    return FeeService(db, codec=state.codec, gateway=state.gateway, policy=state.late_fee_policy)
