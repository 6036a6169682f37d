"""Quiz and question routes."""

from datetime import datetime
from typing import Any, List, Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel
from sqlmodel import Session

from quizgate.database import get_session
from quizgate.deps import Principal, get_current_principal, require_login
from quizgate.services import quiz_service

router = APIRouter()


# --- Request schemas ---


class QuizIn(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    difficulty_level: Optional[str] = None
    category: Optional[str] = None
    time_limit_minutes: Optional[int] = None
    release_at: Optional[datetime] = None
    organizer_name: Optional[str] = None
    visibility: Optional[str] = None
    is_published: Optional[bool] = None


class OptionIn(BaseModel):
    id: Optional[int] = None
    option_text: Optional[str] = None
    is_correct: bool = False


class QuestionIn(BaseModel):
    question_text: Optional[str] = None
    question_type: Optional[str] = None
    points: Optional[int] = None
    options: Optional[List[OptionIn]] = None


class ReorderIn(BaseModel):
    # Shape is checked by the service so a bad payload answers 400
    questions: Any = None


def _options_payload(payload: QuestionIn) -> Optional[List[dict]]:
    if payload.options is None:
        return None
    return [option.model_dump() for option in payload.options]


# --- Quizzes ---


@router.post("/quiz", status_code=status.HTTP_201_CREATED)
def create_quiz(
    payload: QuizIn,
    session: Session = Depends(get_session),
    principal: Principal = Depends(require_login),
):
    quiz = quiz_service.create_quiz(session, principal, payload.model_dump(exclude_unset=True))
    return quiz_service.quiz_to_dict(quiz)


@router.get("/quizzes")
def list_quizzes(
    session: Session = Depends(get_session),
    principal: Optional[Principal] = Depends(get_current_principal),
):
    """Owned and invited quizzes when signed in, public quizzes otherwise."""
    if principal is None:
        return [quiz_service.quiz_to_dict(q) for q in quiz_service.list_public_quizzes(session)]
    return quiz_service.list_quizzes_for_user(session, principal)


@router.get("/quizzes/public")
def list_public_quizzes(session: Session = Depends(get_session)):
    return [quiz_service.quiz_to_dict(q) for q in quiz_service.list_public_quizzes(session)]


@router.get("/quiz/{quiz_ref}")
def get_quiz(quiz_ref: str, session: Session = Depends(get_session)):
    quiz, questions = quiz_service.get_quiz_detail(session, quiz_ref)
    return {**quiz_service.quiz_to_dict(quiz), "questions": questions}


@router.put("/quiz/{quiz_ref}")
def update_quiz(
    quiz_ref: str,
    payload: QuizIn,
    session: Session = Depends(get_session),
    principal: Optional[Principal] = Depends(get_current_principal),
):
    quiz = quiz_service.update_quiz(
        session, quiz_ref, principal, payload.model_dump(exclude_unset=True)
    )
    return quiz_service.quiz_to_dict(quiz)


@router.delete("/quiz/{quiz_ref}")
def delete_quiz(
    quiz_ref: str,
    session: Session = Depends(get_session),
    principal: Optional[Principal] = Depends(get_current_principal),
):
    quiz_service.delete_quiz(session, quiz_ref, principal)
    return {"success": True}


# --- Questions ---


@router.get("/quiz/{quiz_ref}/questions")
def list_questions(
    quiz_ref: str,
    session: Session = Depends(get_session),
    principal: Optional[Principal] = Depends(get_current_principal),
):
    """Creator view including the answer key."""
    return quiz_service.list_owner_questions(session, quiz_ref, principal)


@router.post("/quiz/{quiz_ref}/questions", status_code=status.HTTP_201_CREATED)
def add_question(
    quiz_ref: str,
    payload: QuestionIn,
    session: Session = Depends(get_session),
    principal: Optional[Principal] = Depends(get_current_principal),
):
    return quiz_service.add_question(
        session,
        quiz_ref,
        principal,
        question_text=payload.question_text,
        question_type=payload.question_type,
        points=payload.points,
        options=_options_payload(payload),
    )


@router.put("/quiz/{quiz_ref}/questions/reorder")
def reorder_questions(
    quiz_ref: str,
    payload: ReorderIn,
    session: Session = Depends(get_session),
    principal: Optional[Principal] = Depends(get_current_principal),
):
    quiz_service.reorder_questions(session, quiz_ref, principal, payload.questions)
    return {"success": True}


@router.get("/quiz/{quiz_ref}/questions/{question_id}")
def get_question(quiz_ref: str, question_id: int, session: Session = Depends(get_session)):
    return quiz_service.get_public_question(session, quiz_ref, question_id)


@router.put("/quiz/{quiz_ref}/questions/{question_id}")
def update_question(
    quiz_ref: str,
    question_id: int,
    payload: QuestionIn,
    session: Session = Depends(get_session),
    principal: Optional[Principal] = Depends(get_current_principal),
):
    fields = payload.model_dump(exclude_unset=True, exclude={"options"})
    return quiz_service.update_question(
        session, quiz_ref, question_id, principal, fields, options=_options_payload(payload)
    )


@router.delete("/quiz/{quiz_ref}/questions/{question_id}")
def delete_question(
    quiz_ref: str,
    question_id: int,
    session: Session = Depends(get_session),
    principal: Optional[Principal] = Depends(get_current_principal),
):
    quiz_service.delete_question(session, quiz_ref, question_id, principal)
    return {"success": True}
