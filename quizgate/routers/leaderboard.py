"""Public leaderboard route."""

from typing import Optional

from fastapi import APIRouter, Depends
from sqlmodel import Session

from quizgate.database import get_session
from quizgate.services.leaderboard_service import public_leaderboard

router = APIRouter()


@router.get("/quiz/{quiz_ref}/leaderboard")
def get_leaderboard(
    quiz_ref: str,
    limit: Optional[int] = None,
    session: Session = Depends(get_session),
):
    return public_leaderboard(session, quiz_ref, limit=limit)
