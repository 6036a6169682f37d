"""Account registration and session login."""

from typing import Optional

from fastapi import APIRouter, Depends, Request, status
from pydantic import BaseModel
from sqlmodel import Session, select

from quizgate.auth_utils import hash_password, verify_password
from quizgate.database import atomic, get_session
from quizgate.deps import get_current_user
from quizgate.email_validator import is_valid_email, normalize_email
from quizgate.errors import Unauthenticated, ValidationFailed
from quizgate.models import User, utcnow

router = APIRouter()

PASSWORD_MIN_LENGTH = 8
# bcrypt only looks at the first 72 bytes
PASSWORD_MAX_BYTES = 72


class RegisterIn(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None
    full_name: Optional[str] = None
    name: Optional[str] = None


class LoginIn(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None


def _user_to_dict(user: User) -> dict:
    return {
        "id": user.id,
        "email": user.email,
        "full_name": user.full_name,
        "name": user.name,
        "created_at": user.created_at,
        "last_login": user.last_login,
    }


@router.post("/register", status_code=status.HTTP_201_CREATED)
def register(payload: RegisterIn, session: Session = Depends(get_session)):
    valid, error_message = is_valid_email(payload.email or "")
    if not valid:
        raise ValidationFailed(error_message)
    password = payload.password or ""
    if len(password) < PASSWORD_MIN_LENGTH:
        raise ValidationFailed(f"Password must be at least {PASSWORD_MIN_LENGTH} characters.")
    if len(password.encode("utf-8")) > PASSWORD_MAX_BYTES:
        raise ValidationFailed(f"Password must be at most {PASSWORD_MAX_BYTES} bytes.")

    email = normalize_email(payload.email)
    if session.exec(select(User).where(User.email == email)).first():
        raise ValidationFailed("This email is already registered.")

    user = User(
        email=email,
        password_hash=hash_password(password),
        full_name=(payload.full_name or "").strip() or None,
        name=(payload.name or "").strip() or None,
    )
    with atomic(session):
        session.add(user)
    session.refresh(user)
    return _user_to_dict(user)


@router.post("/login")
def login(request: Request, payload: LoginIn, session: Session = Depends(get_session)):
    email = normalize_email(payload.email)
    if not email or not payload.password:
        raise ValidationFailed("Email and password are required.")

    user = session.exec(select(User).where(User.email == email)).first()
    if not user or not verify_password(payload.password, user.password_hash):
        raise Unauthenticated("Invalid email or password.")
    if not user.is_active:
        raise Unauthenticated("Your account is inactive.")

    with atomic(session):
        user.last_login = utcnow()
        session.add(user)
    session.refresh(user)

    request.session.clear()
    request.session["user_id"] = user.id
    return _user_to_dict(user)


@router.post("/logout")
def logout(request: Request):
    request.session.clear()
    return {"success": True}


@router.get("/me")
def me(current_user: Optional[User] = Depends(get_current_user)):
    if current_user is None:
        raise Unauthenticated()
    return _user_to_dict(current_user)
