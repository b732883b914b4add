"""Shared FastAPI dependencies for database access and authentication."""

from typing import Optional

from fastapi import Depends, HTTPException, Request
from sqlmodel import Session, select

from exam_portal.database import get_session
from exam_portal.models import Role, Student, User


def get_current_user(
    request: Request, session: Session = Depends(get_session)
) -> Optional[User]:
    """Return the currently logged-in user based on the session cookie, if any."""
    user_id = request.session.get("user_id")
    if not user_id:
        return None

    user = session.get(User, user_id)
    if not user or not user.is_active or user.status == "suspended":
        # Clear any stale session
        request.session.clear()
        return None
    return user


def require_login(current_user: Optional[User] = Depends(get_current_user)) -> User:
    """Ensure that a user is logged in."""
    if current_user is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return current_user


def require_role(required_roles: list[str]):
    """Dependency factory that enforces one of the given roles."""

    def wrapper(current_user: User = Depends(require_login)) -> User:
        if current_user.role not in required_roles:
            raise HTTPException(status_code=403, detail="Forbidden")
        return current_user

    return wrapper


def require_student(
    current_user: User = Depends(require_role([Role.STUDENT])),
    session: Session = Depends(get_session),
) -> Student:
    """Resolve the Student profile linked to the logged-in student account."""
    student = session.exec(select(Student).where(Student.user_id == current_user.id)).first()
    if student is None:
        raise HTTPException(status_code=403, detail="No linked student record found")
    return student
