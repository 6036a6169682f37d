"""Quiz lookup by slug or id, and the creator-only write guard."""

import logging
from typing import Optional, Union

from sqlmodel import Session, select

from quizgate.deps import Principal
from quizgate.errors import Forbidden, NotFound, Unauthenticated
from quizgate.models import Quiz

logger = logging.getLogger(__name__)

QuizRef = Union[str, int]


def resolve_quiz(session: Session, quiz_ref: QuizRef) -> Optional[Quiz]:
    """Find a quiz by slug first, then by id.

    Quizzes created before slugs existed are only reachable by id, so both
    lookups run before giving up. Ids are integers, so the id lookup is only
    attempted for integer references.
    """
    ref = str(quiz_ref).strip()
    if not ref:
        return None

    quiz = session.exec(select(Quiz).where(Quiz.slug == ref)).first()
    if quiz is None and ref.isdigit():
        quiz = session.get(Quiz, int(ref))
    return quiz


def get_quiz_or_404(session: Session, quiz_ref: QuizRef) -> Quiz:
    quiz = resolve_quiz(session, quiz_ref)
    if quiz is None:
        raise NotFound("Quiz not found")
    return quiz


def authorize_owner(session: Session, quiz_ref: QuizRef, principal: Optional[Principal]) -> Quiz:
    """Return the quiz if ``principal`` created it.

    Raises Unauthenticated (no principal), NotFound (no quiz under either key)
    or Forbidden (someone else's quiz).
    """
    if principal is None:
        raise Unauthenticated()

    quiz = get_quiz_or_404(session, quiz_ref)
    if quiz.creator_id != principal.id:
        logger.warning("User %s denied write access to quiz %s", principal.id, quiz.id)
        raise Forbidden("You are not the creator of this quiz")
    return quiz
