"""Quiz attempts: start, answer, grade.

A submission moves strictly forward::

    in_progress -> submitted -> graded

Graded submissions may be graded again by the quiz creator, which keeps them
``graded``. Nothing moves a submission backwards and submissions are never
deleted outside of deleting their quiz.
"""

import json
import logging
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from quizgate.database import atomic
from quizgate.deps import Principal
from quizgate.email_validator import email_local_part
from quizgate.errors import Forbidden, NotFound, StorePolicyDenied, Unauthenticated, ValidationFailed
from quizgate.models import (
    SUBMISSION_GRADED,
    SUBMISSION_IN_PROGRESS,
    SUBMISSION_SUBMITTED,
    Question,
    QuestionOption,
    QuizAnswer,
    QuizSubmission,
    utcnow,
)
from quizgate.services import invitation_service
from quizgate.services.access_policy import check_submission_insert
from quizgate.services.ownership import QuizRef, authorize_owner, get_quiz_or_404
from quizgate.services.quiz_service import list_options, list_questions

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS = {
    SUBMISSION_IN_PROGRESS: {SUBMISSION_SUBMITTED},
    SUBMISSION_SUBMITTED: {SUBMISSION_GRADED},
    SUBMISSION_GRADED: {SUBMISSION_GRADED},
}

CHOICE_TYPES = {"multiple_choice", "true_false"}


def display_name(taker: Principal) -> str:
    """Full name, then name, then the email's local part, then ``"Guest"``."""
    for candidate in (taker.full_name, taker.name, email_local_part(taker.email)):
        if candidate and candidate.strip():
            return candidate.strip()
    return "Guest"


def _advance(submission: QuizSubmission, new_status: str) -> None:
    if new_status not in ALLOWED_TRANSITIONS.get(submission.status, set()):
        raise ValidationFailed(
            f"Cannot move submission from '{submission.status}' to '{new_status}'"
        )
    submission.status = new_status


def submission_to_dict(
    submission: QuizSubmission, answers: Optional[List[QuizAnswer]] = None
) -> Dict[str, Any]:
    data = submission.model_dump()
    if answers is not None:
        data["answers"] = [answer.model_dump() for answer in answers]
    return data


def list_answers(session: Session, submission_id: int) -> List[QuizAnswer]:
    return session.exec(
        select(QuizAnswer).where(QuizAnswer.submission_id == submission_id).order_by(QuizAnswer.id)
    ).all()


def _get_submission_in_quiz(session: Session, quiz_id: int, submission_id: int) -> QuizSubmission:
    submission = session.exec(
        select(QuizSubmission).where(
            QuizSubmission.id == submission_id, QuizSubmission.quiz_id == quiz_id
        )
    ).first()
    if submission is None:
        raise NotFound("Submission not found")
    return submission


# ---------------------------------------------------------------------------
# Starting an attempt
# ---------------------------------------------------------------------------


def start_submission(
    session: Session, quiz_ref: QuizRef, taker: Optional[Principal]
) -> QuizSubmission:
    """Open a new in-progress attempt for ``taker``.

    A pending invitation for the taker's email is accepted first, so an
    invitee of a private quiz passes the insert policy on their first try.
    Every call creates a new, independent submission.
    """
    if taker is None:
        raise Unauthenticated()
    quiz = get_quiz_or_404(session, quiz_ref)

    if taker.email:
        invitation_service.auto_accept(session, quiz.id, taker)

    submission = QuizSubmission(
        quiz_id=quiz.id,
        user_id=taker.id,
        status=SUBMISSION_IN_PROGRESS,
        score=0,
        total_points=0,
        submitted_by_name=display_name(taker),
        submitted_by_email=taker.email or None,
    )
    try:
        with atomic(session):
            check_submission_insert(session, quiz, taker)
            session.add(submission)
    except StorePolicyDenied as exc:
        logger.warning("User %s may not take quiz %s: %s", taker.id, quiz.id, exc.details)
        raise
    except IntegrityError as exc:
        logger.warning("Submission insert for quiz %s rejected: %s", quiz.id, exc)
        raise StorePolicyDenied(details=str(getattr(exc, "orig", exc))) from exc

    session.refresh(submission)
    logger.info("Submission %s started on quiz %s by user %s", submission.id, quiz.id, taker.id)
    return submission


# ---------------------------------------------------------------------------
# Grading
# ---------------------------------------------------------------------------


def _as_option_id(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


def grade_answer(
    question: Question, options: List[QuestionOption], user_answer: Any
) -> Tuple[bool, int]:
    """Return ``(is_correct, points_earned)`` for one answer against the stored key."""
    correct = [option for option in options if option.is_correct]

    if question.question_type == "multiple_choice":
        selected = user_answer if isinstance(user_answer, list) else [user_answer]
        selected_ids = {_as_option_id(value) for value in selected}
        correct_ids = {option.id for option in correct}
        is_correct = bool(correct_ids) and selected_ids == correct_ids
    elif question.question_type == "true_false":
        is_correct = bool(correct) and _as_option_id(user_answer) == correct[0].id
    else:
        # short_answer / fill_in_blank: any correct option text, case-insensitive
        given = str(user_answer if user_answer is not None else "").strip().lower()
        is_correct = bool(given) and any(
            option.option_text.strip().lower() == given for option in correct
        )

    return is_correct, question.points if is_correct else 0


def _store_answer_text(user_answer: Any) -> Optional[str]:
    if user_answer is None:
        return None
    if isinstance(user_answer, list):
        return json.dumps(user_answer)
    return str(user_answer)


def _total_points(session: Session, quiz_id: int) -> int:
    return sum(question.points or 1 for question in list_questions(session, quiz_id))


def grade_submission(
    session: Session, submission: QuizSubmission, manual_score: Optional[int] = None
) -> QuizSubmission:
    """Sum the stored answers into ``score`` and mark the submission graded.

    Caller owns the transaction.
    """
    total_points = _total_points(session, submission.quiz_id)
    if manual_score is not None:
        if manual_score < 0 or manual_score > total_points:
            raise ValidationFailed(f"Manual score must be between 0 and {total_points}")
        score = manual_score
    else:
        score = sum(answer.points_earned or 0 for answer in list_answers(session, submission.id))

    _advance(submission, SUBMISSION_GRADED)
    submission.score = score
    submission.total_points = total_points
    session.add(submission)
    return submission


def _parse_answers(answers: Any) -> List[Dict[str, Any]]:
    if not isinstance(answers, list) or not answers:
        raise ValidationFailed("Invalid answers format")
    parsed = []
    for item in answers:
        if not isinstance(item, dict) or _as_option_id(item.get("question_id")) is None:
            raise ValidationFailed("Invalid answers format")
        parsed.append({"question_id": _as_option_id(item["question_id"]), "user_answer": item.get("user_answer")})
    return parsed


def submit_answers(
    session: Session,
    quiz_ref: QuizRef,
    submission_id: int,
    taker: Optional[Principal],
    answers: Any,
) -> QuizSubmission:
    """Record the taker's answers, then move the attempt to submitted and graded."""
    if taker is None:
        raise Unauthenticated()
    quiz = get_quiz_or_404(session, quiz_ref)
    submission = _get_submission_in_quiz(session, quiz.id, submission_id)
    if submission.user_id != taker.id:
        raise NotFound("Submission not found")
    parsed = _parse_answers(answers)
    if submission.status != SUBMISSION_IN_PROGRESS:
        raise ValidationFailed("This submission has already been submitted")

    questions = {question.id: question for question in list_questions(session, quiz.id)}
    for item in parsed:
        if item["question_id"] not in questions:
            raise NotFound("Question not found")

    existing = {answer.question_id: answer for answer in list_answers(session, submission.id)}

    with atomic(session):
        for item in parsed:
            question = questions[item["question_id"]]
            is_correct, points = grade_answer(
                question, list_options(session, question.id), item["user_answer"]
            )
            answer = existing.get(question.id) or QuizAnswer(
                submission_id=submission.id, question_id=question.id
            )
            answer.user_answer = _store_answer_text(item["user_answer"])
            answer.is_correct = is_correct
            answer.points_earned = points
            session.add(answer)
            existing[question.id] = answer

        now = utcnow()
        _advance(submission, SUBMISSION_SUBMITTED)
        submission.submitted_at = now
        submission.time_taken = max(int((now - submission.started_at).total_seconds()), 0)
        submission.submitted_by_name = display_name(taker)
        submission.submitted_by_email = taker.email or None
        session.add(submission)
        session.flush()

        grade_submission(session, submission)

    session.refresh(submission)
    logger.info(
        "Submission %s graded: %s/%s", submission.id, submission.score, submission.total_points
    )
    return submission


def regrade_submission(
    session: Session,
    quiz_ref: QuizRef,
    submission_id: int,
    principal: Optional[Principal],
    manual_score: Optional[int] = None,
) -> QuizSubmission:
    """Creator-side grading: recompute from answers or apply ``manual_score``."""
    quiz = authorize_owner(session, quiz_ref, principal)
    submission = _get_submission_in_quiz(session, quiz.id, submission_id)
    if submission.status == SUBMISSION_IN_PROGRESS:
        raise ValidationFailed("Submission has not been submitted yet")

    with atomic(session):
        grade_submission(session, submission, manual_score=manual_score)
    session.refresh(submission)
    logger.info("Submission %s regraded by user %s", submission.id, principal.id)
    return submission


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


def list_quiz_submissions(
    session: Session, quiz_ref: QuizRef, principal: Optional[Principal]
) -> List[QuizSubmission]:
    """Creator-only list, unredacted, most recently submitted first."""
    quiz = authorize_owner(session, quiz_ref, principal)
    return session.exec(
        select(QuizSubmission)
        .where(QuizSubmission.quiz_id == quiz.id)
        .order_by(
            QuizSubmission.submitted_at.is_(None),
            QuizSubmission.submitted_at.desc(),
            QuizSubmission.id.desc(),
        )
    ).all()


def get_submission_detail(
    session: Session, quiz_ref: QuizRef, submission_id: int, principal: Optional[Principal]
) -> Dict[str, Any]:
    if principal is None:
        raise Unauthenticated()
    quiz = get_quiz_or_404(session, quiz_ref)
    submission = _get_submission_in_quiz(session, quiz.id, submission_id)
    if principal.id not in (submission.user_id, quiz.creator_id):
        raise Forbidden("You cannot view this submission")
    return submission_to_dict(submission, list_answers(session, submission.id))


def list_user_submissions(session: Session, principal: Principal) -> List[QuizSubmission]:
    return session.exec(
        select(QuizSubmission)
        .where(QuizSubmission.user_id == principal.id)
        .order_by(QuizSubmission.started_at.desc(), QuizSubmission.id.desc())
    ).all()
