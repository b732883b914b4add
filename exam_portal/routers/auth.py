"""Session-cookie login for every role."""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel
from sqlmodel import Session, select

from exam_portal.auth_utils import verify_password
from exam_portal.database import get_session
from exam_portal.deps import require_login
from exam_portal.models import User
from exam_portal.utils import utcnow

router = APIRouter()


class LoginIn(BaseModel):
    email: str
    password: str


def _user_payload(user: User) -> dict:
    return {
        "id": user.id,
        "name": user.name,
        "email": user.email,
        "role": user.role,
        "school_id": user.school_id,
    }


@router.post("/login")
def login(payload: LoginIn, request: Request, session: Session = Depends(get_session)):
    email_clean = payload.email.strip().lower()
    user: Optional[User] = session.exec(select(User).where(User.email == email_clean)).first()
    if not user or not verify_password(payload.password, user.password_hash):
        raise HTTPException(status_code=401, detail="Invalid email or password.")
    if not user.is_active or user.status == "suspended":
        raise HTTPException(status_code=403, detail="This account has been suspended.")

    user.last_login = utcnow()
    session.add(user)
    session.commit()
    session.refresh(user)

    request.session["user_id"] = user.id
    return _user_payload(user)


@router.post("/logout")
def logout(request: Request):
    request.session.clear()
    return {"status": "logged_out"}


@router.get("/me")
def me(current_user: User = Depends(require_login)):
    return _user_payload(current_user)
