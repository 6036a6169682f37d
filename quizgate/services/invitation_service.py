"""Email invitations to quizzes and their pending -> accepted/declined lifecycle."""

import logging
from typing import Any, Dict, List, Optional, Tuple

from sqlmodel import Session, select

from quizgate.config import config
from quizgate.database import atomic
from quizgate.deps import Principal
from quizgate.email_validator import is_valid_email, normalize_email
from quizgate.errors import Forbidden, NotFound, ValidationFailed
from quizgate.models import (
    INVITATION_ACCEPTED,
    INVITATION_PENDING,
    INVITATION_RESPONSES,
    Quiz,
    QuizInvitation,
    utcnow,
)
from quizgate.services.ownership import authorize_owner

logger = logging.getLogger(__name__)


def invitation_to_dict(invitation: QuizInvitation, quiz: Optional[Quiz] = None) -> Dict[str, Any]:
    data = invitation.model_dump()
    if quiz is not None:
        data["quiz"] = {
            "id": quiz.id,
            "slug": quiz.slug,
            "title": quiz.title,
            "description": quiz.description,
            "total_questions": quiz.total_questions,
            "difficulty_level": quiz.difficulty_level,
            "category": quiz.category,
        }
    return data


def _get_quiz(session: Session, quiz_id: Any) -> Quiz:
    quiz = session.get(Quiz, quiz_id)
    if quiz is None:
        raise NotFound("Quiz not found")
    return quiz


def find_pending(session: Session, quiz_id: int, email: str) -> Optional[QuizInvitation]:
    return session.exec(
        select(QuizInvitation).where(
            QuizInvitation.quiz_id == quiz_id,
            QuizInvitation.invitee_email == normalize_email(email),
            QuizInvitation.status == INVITATION_PENDING,
        )
    ).first()


def invite(
    session: Session, quiz_id: int, inviter: Principal, invitee_email: str
) -> Tuple[QuizInvitation, bool]:
    """Invite an address to a quiz.

    Returns ``(invitation, created)``. An address that already holds a pending
    invitation for the quiz gets that invitation back instead of a duplicate.
    """
    valid, error_message = is_valid_email(invitee_email)
    if not valid:
        raise ValidationFailed(error_message)
    email = normalize_email(invitee_email)

    if config.INVITE_REQUIRES_OWNER:
        quiz = authorize_owner(session, quiz_id, inviter)
    else:
        quiz = _get_quiz(session, quiz_id)

    existing = find_pending(session, quiz.id, email)
    if existing is not None:
        return existing, False

    invitation = QuizInvitation(
        quiz_id=quiz.id,
        inviter_id=inviter.id,
        invitee_email=email,
        status=INVITATION_PENDING,
    )
    with atomic(session):
        session.add(invitation)
    session.refresh(invitation)
    logger.info("User %s invited %s to quiz %s", inviter.id, email, quiz.id)
    return invitation, True


def list_for_quiz(session: Session, quiz_id: int, principal: Principal) -> List[QuizInvitation]:
    if config.INVITE_REQUIRES_OWNER:
        quiz = authorize_owner(session, quiz_id, principal)
    else:
        quiz = _get_quiz(session, quiz_id)
    return session.exec(
        select(QuizInvitation)
        .where(QuizInvitation.quiz_id == quiz.id)
        .order_by(QuizInvitation.invited_at.desc(), QuizInvitation.id.desc())
    ).all()


def list_for_user(session: Session, principal: Principal) -> List[Dict[str, Any]]:
    """Invitations addressed to the caller's email, newest first, with a quiz summary."""
    if not principal.email:
        return []
    rows = session.exec(
        select(QuizInvitation, Quiz)
        .join(Quiz, QuizInvitation.quiz_id == Quiz.id)
        .where(QuizInvitation.invitee_email == normalize_email(principal.email))
        .order_by(QuizInvitation.invited_at.desc(), QuizInvitation.id.desc())
    ).all()
    return [invitation_to_dict(invitation, quiz) for invitation, quiz in rows]


def get_invitation(session: Session, invitation_id: int) -> QuizInvitation:
    invitation = session.get(QuizInvitation, invitation_id)
    if invitation is None:
        raise NotFound("Invitation not found")
    return invitation


def is_invitee(invitation: QuizInvitation, principal: Principal) -> bool:
    if invitation.invitee_id is not None and invitation.invitee_id == principal.id:
        return True
    return bool(principal.email) and normalize_email(principal.email) == invitation.invitee_email


def respond(
    session: Session,
    invitation_id: int,
    status: Optional[str],
    principal: Principal,
) -> QuizInvitation:
    """Accept or decline a pending invitation addressed to ``principal``.

    Answering again with the same status is a no-op; any other change to an
    answered invitation is rejected.
    """
    if status not in INVITATION_RESPONSES:
        raise ValidationFailed("Invalid status. Must be 'accepted' or 'declined'")

    invitation = get_invitation(session, invitation_id)
    if not is_invitee(invitation, principal):
        logger.warning("User %s may not answer invitation %s", principal.id, invitation.id)
        raise Forbidden("This invitation is not addressed to you")
    if invitation.status == status:
        return invitation
    if invitation.status != INVITATION_PENDING:
        raise ValidationFailed(f"Invitation has already been {invitation.status}")

    with atomic(session):
        invitation.status = status
        invitation.responded_at = utcnow()
        invitation.invitee_id = principal.id
        session.add(invitation)
    session.refresh(invitation)
    logger.info("Invitation %s %s", invitation.id, status)
    return invitation


def auto_accept(session: Session, quiz_id: int, taker: Principal) -> Optional[QuizInvitation]:
    """Accept the taker's pending invitation to a quiz, if there is one.

    Binds ``invitee_id`` to the taker's account. Runs before a submission is
    inserted so the insert policy sees the accepted invitation. Returns the
    accepted invitation, or None when nothing was pending.
    """
    if not taker.email:
        return None

    pending = session.exec(
        select(QuizInvitation).where(
            QuizInvitation.quiz_id == quiz_id,
            QuizInvitation.invitee_email == normalize_email(taker.email),
            QuizInvitation.status == INVITATION_PENDING,
        )
    ).all()
    if not pending:
        return None

    # Rows that predate duplicate prevention are accepted together
    with atomic(session):
        now = utcnow()
        for invitation in pending:
            invitation.status = INVITATION_ACCEPTED
            invitation.invitee_id = taker.id
            invitation.responded_at = now
            session.add(invitation)
    accepted = pending[0]
    session.refresh(accepted)
    logger.info("Invitation %s accepted by user %s on first attempt", accepted.id, taker.id)
    return accepted


def delete(session: Session, invitation_id: int, principal: Principal) -> None:
    """Remove an invitation; open to the quiz creator, and unless
    ``INVITE_REQUIRES_OWNER`` is set, to the inviter and the invitee too."""
    invitation = get_invitation(session, invitation_id)
    quiz = session.get(Quiz, invitation.quiz_id)
    allowed = quiz is not None and quiz.creator_id == principal.id
    if not allowed and not config.INVITE_REQUIRES_OWNER:
        allowed = invitation.inviter_id == principal.id or is_invitee(invitation, principal)
    if not allowed:
        logger.warning("User %s denied deleting invitation %s", principal.id, invitation.id)
        raise Forbidden("You cannot delete this invitation")
    with atomic(session):
        session.delete(invitation)
    logger.info("Invitation %s deleted by user %s", invitation_id, principal.id)
