"""Quiz, question and option management for quiz creators."""

import logging
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import func
from sqlmodel import Session, select

from quizgate.database import atomic
from quizgate.deps import Principal
from quizgate.errors import NotFound, ValidationFailed
from quizgate.models import (
    DIFFICULTY_OPTIONS,
    INVITATION_ACCEPTED,
    INVITATION_PENDING,
    QUESTION_TYPES,
    VISIBILITY_OPTIONS,
    VISIBILITY_PRIVATE,
    VISIBILITY_PUBLIC,
    Question,
    QuestionOption,
    Quiz,
    QuizAnswer,
    QuizInvitation,
    QuizSubmission,
    utcnow,
)
from quizgate.services.ownership import QuizRef, authorize_owner, get_quiz_or_404
from quizgate.utils import sanitize_plain_text, sanitize_question_text, slugify_title

logger = logging.getLogger(__name__)

# Validation constraints
QUIZ_TITLE_MAX_LENGTH = 200
QUESTION_TEXT_MAX_LENGTH = 5000
OPTION_TEXT_MAX_LENGTH = 1000

# Question types whose options are the accepted answers themselves
TEXT_ANSWER_TYPES = {"short_answer", "fill_in_blank"}

# Quiz columns a creator may set through create/update
QUIZ_EDITABLE_FIELDS = (
    "title",
    "description",
    "difficulty_level",
    "category",
    "time_limit_minutes",
    "release_at",
    "organizer_name",
    "is_published",
    "visibility",
)


# ---------------------------------------------------------------------------
# Serialization
# ---------------------------------------------------------------------------


def quiz_to_dict(quiz: Quiz) -> Dict[str, Any]:
    return quiz.model_dump()


def option_to_dict(option: QuestionOption, include_answer_key: bool) -> Dict[str, Any]:
    data = {
        "id": option.id,
        "question_id": option.question_id,
        "option_text": option.option_text,
        "order": option.order,
    }
    if include_answer_key:
        data["is_correct"] = option.is_correct
    return data


def question_to_dict(
    session: Session, question: Question, include_answer_key: bool = False
) -> Dict[str, Any]:
    """Question with its options; ``is_correct`` only when ``include_answer_key``.

    Without the answer key, text-answer questions list no options at all.
    """
    if not include_answer_key and question.question_type in TEXT_ANSWER_TYPES:
        options = []
    else:
        options = list_options(session, question.id)
    return {
        "id": question.id,
        "quiz_id": question.quiz_id,
        "question_text": question.question_text,
        "question_type": question.question_type,
        "points": question.points,
        "order": question.order,
        "question_options": [option_to_dict(o, include_answer_key) for o in options],
    }


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


def list_questions(session: Session, quiz_id: int) -> List[Question]:
    return session.exec(
        select(Question).where(Question.quiz_id == quiz_id).order_by(Question.order, Question.id)
    ).all()


def list_options(session: Session, question_id: int) -> List[QuestionOption]:
    return session.exec(
        select(QuestionOption)
        .where(QuestionOption.question_id == question_id)
        .order_by(QuestionOption.order, QuestionOption.id)
    ).all()


def count_questions(session: Session, quiz_id: int) -> int:
    return session.exec(
        select(func.count()).select_from(Question).where(Question.quiz_id == quiz_id)
    ).one()


def _get_question_in_quiz(session: Session, quiz_id: int, question_id: int) -> Question:
    question = session.exec(
        select(Question).where(Question.id == question_id, Question.quiz_id == quiz_id)
    ).first()
    if question is None:
        raise NotFound("Question not found")
    return question


def _sync_total_questions(session: Session, quiz: Quiz) -> None:
    """Rewrite the denormalized counter from the live row count (pending rows included)."""
    session.flush()
    quiz.total_questions = count_questions(session, quiz.id)
    quiz.updated_at = utcnow()
    session.add(quiz)


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def _validate_quiz_fields(fields: Dict[str, Any], creating: bool) -> Dict[str, Any]:
    """Return the subset of ``fields`` that may be written, cleaned; raise on bad values."""
    data = {key: fields[key] for key in QUIZ_EDITABLE_FIELDS if key in fields}

    if creating or "title" in data:
        title = (data.get("title") or "").strip()
        if not title:
            raise ValidationFailed("Title is required")
        if len(title) > QUIZ_TITLE_MAX_LENGTH:
            raise ValidationFailed(f"Title must be at most {QUIZ_TITLE_MAX_LENGTH} characters")
        data["title"] = title

    if "visibility" in data and data["visibility"] is None:
        # An explicit null is treated like an omitted field
        data.pop("visibility")
    if "visibility" in data and data["visibility"] not in VISIBILITY_OPTIONS:
        raise ValidationFailed("Visibility must be 'public' or 'private'")

    difficulty = data.get("difficulty_level")
    if difficulty is not None and difficulty not in DIFFICULTY_OPTIONS:
        raise ValidationFailed("Difficulty must be one of: easy, medium, hard")

    time_limit = data.get("time_limit_minutes")
    if time_limit is not None and time_limit < 1:
        raise ValidationFailed("Time limit must be at least 1 minute")

    if "is_published" in data and data["is_published"] is None:
        data.pop("is_published")

    return data


def _clean_question_text(text: Optional[str]) -> str:
    cleaned = sanitize_question_text(text or "")
    if not cleaned:
        raise ValidationFailed("Question text is required")
    if len(cleaned) > QUESTION_TEXT_MAX_LENGTH:
        raise ValidationFailed(f"Question text must be at most {QUESTION_TEXT_MAX_LENGTH} characters")
    return cleaned


def _check_question_type(question_type: Optional[str]) -> str:
    if question_type not in QUESTION_TYPES:
        raise ValidationFailed(
            "Question type must be one of: " + ", ".join(sorted(QUESTION_TYPES))
        )
    return question_type


def _check_points(points: Optional[int]) -> int:
    if points is None:
        return 1
    if points < 1:
        raise ValidationFailed("Points must be at least 1")
    return points


def _clean_options(options: Optional[List[Dict[str, Any]]]) -> List[Dict[str, Any]]:
    cleaned = []
    seen_ids = set()
    for item in options or []:
        text = sanitize_plain_text(item.get("option_text") or "")
        if not text:
            raise ValidationFailed("Option text is required")
        if len(text) > OPTION_TEXT_MAX_LENGTH:
            raise ValidationFailed(f"Option text must be at most {OPTION_TEXT_MAX_LENGTH} characters")
        option_id = item.get("id")
        if option_id is not None:
            if option_id in seen_ids:
                raise ValidationFailed(f"Option {option_id} is listed more than once")
            seen_ids.add(option_id)
        cleaned.append(
            {"id": option_id, "option_text": text, "is_correct": bool(item.get("is_correct"))}
        )
    return cleaned


# ---------------------------------------------------------------------------
# Quizzes
# ---------------------------------------------------------------------------


def create_quiz(session: Session, principal: Principal, fields: Dict[str, Any]) -> Quiz:
    data = _validate_quiz_fields(fields, creating=True)
    data.setdefault("visibility", VISIBILITY_PRIVATE)
    data["is_published"] = False

    quiz = Quiz(
        **data,
        slug=slugify_title(data["title"]),
        creator_id=principal.id,
        total_questions=0,
    )
    with atomic(session):
        session.add(quiz)
    session.refresh(quiz)
    logger.info("Quiz %s created by user %s", quiz.id, principal.id)
    return quiz


def update_quiz(
    session: Session, quiz_ref: QuizRef, principal: Optional[Principal], fields: Dict[str, Any]
) -> Quiz:
    """Partial update; only keys present in ``fields`` are written."""
    quiz = authorize_owner(session, quiz_ref, principal)
    data = _validate_quiz_fields(fields, creating=False)

    with atomic(session):
        for key, value in data.items():
            setattr(quiz, key, value)
        quiz.updated_at = utcnow()
        session.add(quiz)
    session.refresh(quiz)
    return quiz


def delete_quiz(session: Session, quiz_ref: QuizRef, principal: Optional[Principal]) -> None:
    """Delete a quiz with its questions, options, invitations and submissions."""
    quiz = authorize_owner(session, quiz_ref, principal)
    quiz_id = quiz.id

    with atomic(session):
        submissions = session.exec(
            select(QuizSubmission).where(QuizSubmission.quiz_id == quiz_id)
        ).all()
        for submission in submissions:
            for answer in session.exec(
                select(QuizAnswer).where(QuizAnswer.submission_id == submission.id)
            ).all():
                session.delete(answer)
            session.delete(submission)

        for invitation in session.exec(
            select(QuizInvitation).where(QuizInvitation.quiz_id == quiz_id)
        ).all():
            session.delete(invitation)

        for question in list_questions(session, quiz_id):
            for option in list_options(session, question.id):
                session.delete(option)
            session.delete(question)

        session.delete(quiz)
    logger.info("Quiz %s deleted by user %s", quiz_id, principal.id)


def get_quiz_detail(session: Session, quiz_ref: QuizRef) -> Tuple[Quiz, List[Dict[str, Any]]]:
    """Public quiz view: the quiz plus its ordered questions, without the answer key."""
    quiz = get_quiz_or_404(session, quiz_ref)
    questions = [question_to_dict(session, q) for q in list_questions(session, quiz.id)]
    return quiz, questions


def list_public_quizzes(session: Session) -> List[Quiz]:
    return session.exec(
        select(Quiz)
        .where(Quiz.is_published == True, Quiz.visibility == VISIBILITY_PUBLIC)  # noqa: E712
        .order_by(Quiz.created_at.desc(), Quiz.id.desc())
    ).all()


def list_quizzes_for_user(session: Session, principal: Principal) -> List[Dict[str, Any]]:
    """Quizzes the caller owns plus those they were invited to (pending or accepted)."""
    owned = session.exec(select(Quiz).where(Quiz.creator_id == principal.id)).all()
    combined = [
        {**quiz_to_dict(quiz), "access_type": "owner", "_sort": quiz.updated_at or quiz.created_at}
        for quiz in owned
    ]

    if principal.email:
        invited_rows = session.exec(
            select(QuizInvitation, Quiz)
            .join(Quiz, QuizInvitation.quiz_id == Quiz.id)
            .where(
                QuizInvitation.invitee_email == principal.email.lower(),
                QuizInvitation.status.in_([INVITATION_PENDING, INVITATION_ACCEPTED]),
                Quiz.creator_id != principal.id,
            )
        ).all()
        for invitation, quiz in invited_rows:
            combined.append(
                {
                    **quiz_to_dict(quiz),
                    "access_type": "invited",
                    "invitation_status": invitation.status,
                    "invited_at": invitation.invited_at,
                    "_sort": invitation.invited_at,
                }
            )

    combined.sort(key=lambda row: row["_sort"], reverse=True)
    for row in combined:
        row.pop("_sort")
    return combined


# ---------------------------------------------------------------------------
# Questions
# ---------------------------------------------------------------------------


def list_owner_questions(
    session: Session, quiz_ref: QuizRef, principal: Optional[Principal]
) -> List[Dict[str, Any]]:
    """Creator view of the questions, answer key included."""
    quiz = authorize_owner(session, quiz_ref, principal)
    return [
        question_to_dict(session, q, include_answer_key=True)
        for q in list_questions(session, quiz.id)
    ]


def get_public_question(session: Session, quiz_ref: QuizRef, question_id: int) -> Dict[str, Any]:
    quiz = get_quiz_or_404(session, quiz_ref)
    question = _get_question_in_quiz(session, quiz.id, question_id)
    return question_to_dict(session, question)


def add_question(
    session: Session,
    quiz_ref: QuizRef,
    principal: Optional[Principal],
    question_text: Optional[str],
    question_type: Optional[str],
    points: Optional[int] = None,
    options: Optional[List[Dict[str, Any]]] = None,
) -> Dict[str, Any]:
    """Append a question (order = current count + 1) with its options."""
    quiz = authorize_owner(session, quiz_ref, principal)
    text = _clean_question_text(question_text)
    qtype = _check_question_type(question_type)
    point_value = _check_points(points)
    cleaned_options = _clean_options(options)

    with atomic(session):
        question = Question(
            quiz_id=quiz.id,
            question_text=text,
            question_type=qtype,
            points=point_value,
            order=count_questions(session, quiz.id) + 1,
        )
        session.add(question)
        session.flush()

        for position, item in enumerate(cleaned_options, start=1):
            session.add(
                QuestionOption(
                    question_id=question.id,
                    option_text=item["option_text"],
                    is_correct=item["is_correct"],
                    order=position,
                )
            )
        _sync_total_questions(session, quiz)

    session.refresh(question)
    logger.info("Question %s added to quiz %s", question.id, quiz.id)
    return question_to_dict(session, question, include_answer_key=True)


def reconcile_options(
    session: Session, question_id: int, incoming: List[Dict[str, Any]]
) -> None:
    """Make the stored options of a question match ``incoming``, keyed by option id.

    Items without an id are inserted, stored options whose id is absent are
    deleted, and the rest are updated in place so they keep their id. Every
    option takes its position in ``incoming`` as its new order.
    """
    existing = {option.id: option for option in list_options(session, question_id)}
    keep_ids = {item["id"] for item in incoming if item["id"] is not None}

    unknown = keep_ids - existing.keys()
    if unknown:
        raise ValidationFailed(
            "Options do not belong to this question: " + ", ".join(str(i) for i in sorted(unknown))
        )

    for option_id, option in existing.items():
        if option_id not in keep_ids:
            session.delete(option)

    for position, item in enumerate(incoming, start=1):
        if item["id"] is None:
            session.add(
                QuestionOption(
                    question_id=question_id,
                    option_text=item["option_text"],
                    is_correct=item["is_correct"],
                    order=position,
                )
            )
        else:
            option = existing[item["id"]]
            option.option_text = item["option_text"]
            option.is_correct = item["is_correct"]
            option.order = position
            session.add(option)


def update_question(
    session: Session,
    quiz_ref: QuizRef,
    question_id: int,
    principal: Optional[Principal],
    fields: Dict[str, Any],
    options: Optional[List[Dict[str, Any]]] = None,
) -> Dict[str, Any]:
    quiz = authorize_owner(session, quiz_ref, principal)
    question = _get_question_in_quiz(session, quiz.id, question_id)

    updates: Dict[str, Any] = {}
    if fields.get("question_text") is not None:
        updates["question_text"] = _clean_question_text(fields["question_text"])
    if fields.get("question_type") is not None:
        updates["question_type"] = _check_question_type(fields["question_type"])
    if fields.get("points") is not None:
        updates["points"] = _check_points(fields["points"])
    cleaned_options = _clean_options(options) if options is not None else None

    with atomic(session):
        for key, value in updates.items():
            setattr(question, key, value)
        question.updated_at = utcnow()
        session.add(question)
        if cleaned_options is not None:
            reconcile_options(session, question.id, cleaned_options)

    session.refresh(question)
    return question_to_dict(session, question, include_answer_key=True)


def delete_question(
    session: Session, quiz_ref: QuizRef, question_id: int, principal: Optional[Principal]
) -> None:
    """Delete a question and its options, close the order gap and recount."""
    quiz = authorize_owner(session, quiz_ref, principal)
    question = _get_question_in_quiz(session, quiz.id, question_id)

    with atomic(session):
        for option in list_options(session, question.id):
            session.delete(option)
        for answer in session.exec(
            select(QuizAnswer).where(QuizAnswer.question_id == question.id)
        ).all():
            session.delete(answer)
        session.delete(question)
        session.flush()

        # Renumber so the next append (count + 1) never collides with a live order
        for position, remaining in enumerate(list_questions(session, quiz.id), start=1):
            if remaining.order != position:
                remaining.order = position
                session.add(remaining)
        _sync_total_questions(session, quiz)
    logger.info("Question %s deleted from quiz %s", question_id, quiz.id)


def _parse_reorder_payload(items: Any) -> List[Tuple[int, int]]:
    if not isinstance(items, list) or not items:
        raise ValidationFailed("Invalid request body")

    parsed = []
    for item in items:
        if not isinstance(item, dict):
            raise ValidationFailed("Invalid request body")
        question_id = item.get("id")
        order = item.get("order")
        if isinstance(question_id, bool) or isinstance(order, bool):
            raise ValidationFailed("Invalid request body")
        if not isinstance(question_id, int) or not isinstance(order, int):
            raise ValidationFailed("Each question needs an integer id and order")
        if order < 1:
            raise ValidationFailed("Question order must be at least 1")
        parsed.append((question_id, order))
    return parsed


def reorder_questions(
    session: Session, quiz_ref: QuizRef, principal: Optional[Principal], items: Any
) -> None:
    """Apply ``[{id, order}]`` updates to the quiz's questions as one unit.

    Ids from other quizzes match nothing and are skipped. If the resulting
    orders of the quiz are not unique the whole batch is rolled back.
    """
    quiz = authorize_owner(session, quiz_ref, principal)
    updates = _parse_reorder_payload(items)

    with atomic(session):
        for question_id, order in updates:
            question = session.exec(
                select(Question).where(Question.id == question_id, Question.quiz_id == quiz.id)
            ).first()
            if question is None:
                continue
            question.order = order
            question.updated_at = utcnow()
            session.add(question)
        session.flush()

        orders = [q.order for q in list_questions(session, quiz.id)]
        if len(orders) != len(set(orders)):
            raise ValidationFailed("Question orders must be unique within a quiz")
    logger.info("Questions of quiz %s reordered", quiz.id)
