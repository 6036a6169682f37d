"""Invitation routes."""

from typing import Optional

from fastapi import APIRouter, Depends, Response, status
from pydantic import BaseModel
from sqlmodel import Session

from quizgate.database import get_session
from quizgate.deps import Principal, require_login
from quizgate.errors import ValidationFailed
from quizgate.services import invitation_service

router = APIRouter()


class InvitationIn(BaseModel):
    quiz_id: Optional[int] = None
    invitee_email: Optional[str] = None


class RespondIn(BaseModel):
    status: Optional[str] = None


@router.post("/invitations", status_code=status.HTTP_201_CREATED)
def create_invitation(
    payload: InvitationIn,
    response: Response,
    session: Session = Depends(get_session),
    principal: Principal = Depends(require_login),
):
    if payload.quiz_id is None or not (payload.invitee_email or "").strip():
        raise ValidationFailed("quiz_id and invitee_email are required")

    invitation, created = invitation_service.invite(
        session, payload.quiz_id, principal, payload.invitee_email
    )
    if not created:
        response.status_code = status.HTTP_200_OK
    return invitation_service.invitation_to_dict(invitation)


@router.get("/invitations")
def list_invitations(
    quiz_id: Optional[int] = None,
    session: Session = Depends(get_session),
    principal: Principal = Depends(require_login),
):
    """A quiz's invitations with ``?quiz_id=``, otherwise the caller's own."""
    if quiz_id is not None:
        invitations = invitation_service.list_for_quiz(session, quiz_id, principal)
        return [invitation_service.invitation_to_dict(inv) for inv in invitations]
    return invitation_service.list_for_user(session, principal)


@router.patch("/invitations/{invitation_id}")
def respond_to_invitation(
    invitation_id: int,
    payload: RespondIn,
    session: Session = Depends(get_session),
    principal: Principal = Depends(require_login),
):
    invitation = invitation_service.respond(session, invitation_id, payload.status, principal)
    return invitation_service.invitation_to_dict(invitation)


@router.delete("/invitations/{invitation_id}")
def delete_invitation(
    invitation_id: int,
    session: Session = Depends(get_session),
    principal: Principal = Depends(require_login),
):
    invitation_service.delete(session, invitation_id, principal)
    return {"success": True}
