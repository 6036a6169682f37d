"""Public, redacted leaderboards over graded submissions."""

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlmodel import Session, select

from quizgate.config import config
from quizgate.email_validator import email_local_part
from quizgate.errors import Forbidden, ValidationFailed
from quizgate.models import SUBMISSION_GRADED, VISIBILITY_PUBLIC, QuizSubmission
from quizgate.services.ownership import QuizRef, get_quiz_or_404

logger = logging.getLogger(__name__)


def redact_email(email: Optional[str]) -> str:
    """``"jane@example.com"`` -> ``"jane***"``; a missing address reads ``"Anonymous"``."""
    if not email:
        return "Anonymous"
    return email_local_part(email) + "***"


def score_percentage(score: int, total_points: int) -> float:
    if not total_points:
        return 0.0
    return round(score * 100.0 / total_points, 2)


def leaderboard_view(session: Session, quiz_id: int, limit: int) -> List[Dict[str, Any]]:
    """Ranked graded submissions of one quiz, unredacted.

    Higher score ranks first; equal scores rank by earlier ``submitted_at``.
    """
    rank = (
        func.rank()
        .over(order_by=(QuizSubmission.score.desc(), QuizSubmission.submitted_at.asc()))
        .label("rank")
    )
    rows = session.exec(
        select(QuizSubmission, rank)
        .where(QuizSubmission.quiz_id == quiz_id, QuizSubmission.status == SUBMISSION_GRADED)
        .order_by(rank, QuizSubmission.id)
        .limit(limit)
    ).all()

    return [
        {
            "submission_id": submission.id,
            "quiz_id": submission.quiz_id,
            "submitted_by_name": submission.submitted_by_name,
            "submitted_by_email": submission.submitted_by_email,
            "score": submission.score,
            "total_points": submission.total_points,
            "score_percentage": score_percentage(submission.score, submission.total_points),
            "rank": position,
            "submitted_at": submission.submitted_at,
        }
        for submission, position in rows
    ]


def public_leaderboard(
    session: Session, quiz_ref: QuizRef, limit: Optional[int] = None
) -> List[Dict[str, Any]]:
    """Leaderboard of a public, published quiz with emails redacted.

    There is no creator bypass: a private or unpublished quiz answers 403 for
    everyone.
    """
    quiz = get_quiz_or_404(session, quiz_ref)
    if quiz.visibility != VISIBILITY_PUBLIC or not quiz.is_published:
        logger.warning("Leaderboard requested for non-public quiz %s", quiz.id)
        raise Forbidden("This leaderboard is not public")

    cap = config.LEADERBOARD_LIMIT
    if limit is None:
        limit = cap
    if limit < 1:
        raise ValidationFailed("Limit must be at least 1")

    entries = leaderboard_view(session, quiz.id, min(limit, cap))
    for entry in entries:
        entry["submitted_by_email"] = redact_email(entry["submitted_by_email"])
    return entries
