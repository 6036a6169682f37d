"""Taking a quiz: start an attempt, submit answers, read results."""

from typing import Any, Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel
from sqlmodel import Session

from quizgate.database import get_session
from quizgate.deps import Principal, get_current_principal, require_login
from quizgate.services import submission_service

router = APIRouter()


class AnswersIn(BaseModel):
    # [{question_id, user_answer}]; shape is checked by the service
    answers: Any = None


class GradeIn(BaseModel):
    manual_score: Optional[int] = None


@router.post("/quiz/{quiz_ref}/submissions", status_code=status.HTTP_201_CREATED)
def start_submission(
    quiz_ref: str,
    session: Session = Depends(get_session),
    principal: Optional[Principal] = Depends(get_current_principal),
):
    submission = submission_service.start_submission(session, quiz_ref, principal)
    return submission_service.submission_to_dict(submission)


@router.get("/quiz/{quiz_ref}/submissions")
def list_quiz_submissions(
    quiz_ref: str,
    session: Session = Depends(get_session),
    principal: Optional[Principal] = Depends(get_current_principal),
):
    submissions = submission_service.list_quiz_submissions(session, quiz_ref, principal)
    return [submission_service.submission_to_dict(s) for s in submissions]


@router.get("/quiz/{quiz_ref}/submissions/{submission_id}")
def get_submission(
    quiz_ref: str,
    submission_id: int,
    session: Session = Depends(get_session),
    principal: Optional[Principal] = Depends(get_current_principal),
):
    return submission_service.get_submission_detail(session, quiz_ref, submission_id, principal)


@router.post("/quiz/{quiz_ref}/submissions/{submission_id}")
def submit_answers(
    quiz_ref: str,
    submission_id: int,
    payload: AnswersIn,
    session: Session = Depends(get_session),
    principal: Optional[Principal] = Depends(get_current_principal),
):
    submission = submission_service.submit_answers(
        session, quiz_ref, submission_id, principal, payload.answers
    )
    return submission_service.submission_to_dict(submission)


@router.put("/quiz/{quiz_ref}/submissions/{submission_id}")
def grade_submission(
    quiz_ref: str,
    submission_id: int,
    payload: GradeIn,
    session: Session = Depends(get_session),
    principal: Optional[Principal] = Depends(get_current_principal),
):
    submission = submission_service.regrade_submission(
        session, quiz_ref, submission_id, principal, manual_score=payload.manual_score
    )
    return submission_service.submission_to_dict(submission)


@router.get("/submissions")
def my_submissions(
    session: Session = Depends(get_session),
    principal: Principal = Depends(require_login),
):
    submissions = submission_service.list_user_submissions(session, principal)
    return [submission_service.submission_to_dict(s) for s in submissions]
