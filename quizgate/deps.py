"""Shared FastAPI dependencies for database access and authentication."""

from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Request
from sqlmodel import Session

from quizgate.database import get_session
from quizgate.errors import Unauthenticated
from quizgate.models import User


@dataclass(frozen=True)
class Principal:
    """The authenticated caller as the services see it."""

    id: int
    email: str = ""
    full_name: Optional[str] = None
    name: Optional[str] = None

    @classmethod
    def from_user(cls, user: User) -> "Principal":
        return cls(id=user.id, email=user.email or "", full_name=user.full_name, name=user.name)


def get_current_user(
    request: Request, session: Session = Depends(get_session)
) -> Optional[User]:
    """Return the currently logged-in user based on the session cookie, if any."""
    user_id = request.session.get("user_id")
    if not user_id:
        return None

    user = session.get(User, user_id)
    if not user or not user.is_active:
        # Clear any stale session
        request.session.clear()
        return None
    return user


def get_current_principal(
    current_user: Optional[User] = Depends(get_current_user),
) -> Optional[Principal]:
    """Resolve the caller to a Principal, or None for anonymous requests."""
    if current_user is None:
        return None
    return Principal.from_user(current_user)


def require_login(
    principal: Optional[Principal] = Depends(get_current_principal),
) -> Principal:
    """Ensure that a user is logged in; otherwise answer 401."""
    if principal is None:
        raise Unauthenticated()
    return principal
