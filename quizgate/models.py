"""SQLModel models for the quiz platform."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel

VISIBILITY_PUBLIC = "public"
VISIBILITY_PRIVATE = "private"
VISIBILITY_OPTIONS = {VISIBILITY_PUBLIC, VISIBILITY_PRIVATE}

DIFFICULTY_OPTIONS = {"easy", "medium", "hard"}

QUESTION_TYPES = {"multiple_choice", "short_answer", "true_false", "fill_in_blank"}

INVITATION_PENDING = "pending"
INVITATION_ACCEPTED = "accepted"
INVITATION_DECLINED = "declined"
INVITATION_RESPONSES = {INVITATION_ACCEPTED, INVITATION_DECLINED}

SUBMISSION_IN_PROGRESS = "in_progress"
SUBMISSION_SUBMITTED = "submitted"
SUBMISSION_GRADED = "graded"


def utcnow() -> datetime:
    """Naive UTC timestamp; SQLite does not round-trip tzinfo."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class User(SQLModel, table=True):
    """Account that can sign in, author quizzes and take them."""

    __table_args__ = (UniqueConstraint("email", name="uq_user_email"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    email: str  # stored lowercase
    password_hash: str
    full_name: Optional[str] = None
    name: Optional[str] = None
    is_active: bool = Field(default=True)
    created_at: datetime = Field(default_factory=utcnow)
    last_login: Optional[datetime] = None


class Quiz(SQLModel, table=True):
    __table_args__ = (UniqueConstraint("slug", name="uq_quiz_slug"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    # Quizzes created before slugs existed have none and are addressed by id
    slug: Optional[str] = Field(default=None, index=True)
    title: str
    description: Optional[str] = None
    creator_id: int = Field(foreign_key="user.id", index=True)
    is_published: bool = Field(default=False)
    visibility: str = Field(default=VISIBILITY_PRIVATE)  # public | private
    # Denormalized; rewritten in the same transaction as every question insert/delete
    total_questions: int = Field(default=0)
    difficulty_level: Optional[str] = None  # easy | medium | hard
    category: Optional[str] = None
    time_limit_minutes: Optional[int] = None
    release_at: Optional[datetime] = None
    organizer_name: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Question(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    quiz_id: int = Field(foreign_key="quiz.id", index=True)
    question_text: str
    question_type: str  # multiple_choice | short_answer | true_false | fill_in_blank
    points: int = Field(default=1)
    order: int  # 1-based, unique within the quiz
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class QuestionOption(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    question_id: int = Field(foreign_key="question.id", index=True)
    option_text: str
    is_correct: bool = Field(default=False)
    order: int  # 1-based, unique within the question
    created_at: datetime = Field(default_factory=utcnow)


class QuizInvitation(SQLModel, table=True):
    """Email-addressed grant of access to a quiz."""

    id: Optional[int] = Field(default=None, primary_key=True)
    quiz_id: int = Field(foreign_key="quiz.id", index=True)
    inviter_id: int = Field(foreign_key="user.id")
    invitee_email: str = Field(index=True)  # stored lowercase
    # Bound the first time the address is used by a real account
    invitee_id: Optional[int] = Field(default=None, foreign_key="user.id")
    status: str = Field(default=INVITATION_PENDING)  # pending | accepted | declined
    invited_at: datetime = Field(default_factory=utcnow)
    responded_at: Optional[datetime] = None


class QuizSubmission(SQLModel, table=True):
    """One attempt at a quiz by one taker."""

    id: Optional[int] = Field(default=None, primary_key=True)
    quiz_id: int = Field(foreign_key="quiz.id", index=True)
    user_id: int = Field(foreign_key="user.id", index=True)
    submitted_by_name: Optional[str] = None
    submitted_by_email: Optional[str] = None
    status: str = Field(default=SUBMISSION_IN_PROGRESS)  # in_progress | submitted | graded
    score: int = Field(default=0)
    total_points: int = Field(default=0)
    time_taken: Optional[int] = None  # seconds
    started_at: datetime = Field(default_factory=utcnow)
    submitted_at: Optional[datetime] = None


class QuizAnswer(SQLModel, table=True):
    __table_args__ = (
        UniqueConstraint("submission_id", "question_id", name="uq_answer_submission_question"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    submission_id: int = Field(foreign_key="quizsubmission.id", index=True)
    question_id: int = Field(foreign_key="question.id")
    user_answer: Optional[str] = None  # option id, JSON list of option ids, or free text
    is_correct: bool = Field(default=False)
    points_earned: int = Field(default=0)
    created_at: datetime = Field(default_factory=utcnow)
