"""Row-level rules the store applies to submission inserts."""

from sqlmodel import Session, or_, select

from quizgate.deps import Principal
from quizgate.email_validator import normalize_email
from quizgate.errors import StorePolicyDenied
from quizgate.models import INVITATION_ACCEPTED, VISIBILITY_PUBLIC, Quiz, QuizInvitation


def has_accepted_invitation(session: Session, quiz_id: int, taker: Principal) -> bool:
    conditions = [QuizInvitation.invitee_id == taker.id]
    if taker.email:
        conditions.append(QuizInvitation.invitee_email == normalize_email(taker.email))
    row = session.exec(
        select(QuizInvitation.id).where(
            QuizInvitation.quiz_id == quiz_id,
            QuizInvitation.status == INVITATION_ACCEPTED,
            or_(*conditions),
        )
    ).first()
    return row is not None


def check_submission_insert(session: Session, quiz: Quiz, taker: Principal) -> None:
    """Allow the creator, anyone on a public published quiz, and accepted invitees."""
    if quiz.creator_id == taker.id:
        return
    if quiz.visibility == VISIBILITY_PUBLIC and quiz.is_published:
        return
    if has_accepted_invitation(session, quiz.id, taker):
        return
    raise StorePolicyDenied(
        details=f"quiz {quiz.id} is not open to user {taker.id}: no accepted invitation",
    )
