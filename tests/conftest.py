import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine, text

from quizgate.auth_utils import hash_password
from quizgate.database import get_session
from quizgate.deps import Principal
from quizgate.main import app
from quizgate.models import Question, QuestionOption, Quiz, User

# ============================================================================
# IN-MEMORY DATABASE FOR TESTING
# ============================================================================

# StaticPool keeps every connection on the same in-memory database
test_engine = create_engine(
    "sqlite:///:memory:",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

PASSWORD = "password123"


@pytest.fixture(scope="session", autouse=True)
def setup_test_db():
    """Create all tables in the test database once per session."""
    SQLModel.metadata.create_all(test_engine)
    yield
    SQLModel.metadata.drop_all(test_engine)


@pytest.fixture(autouse=True)
def cleanup_db_between_tests():
    """Clean up test data after each test."""
    yield

    # FK-safe order
    with Session(test_engine) as session:
        session.exec(text("DELETE FROM quizanswer"))
        session.exec(text("DELETE FROM quizsubmission"))
        session.exec(text("DELETE FROM quizinvitation"))
        session.exec(text("DELETE FROM questionoption"))
        session.exec(text("DELETE FROM question"))
        session.exec(text("DELETE FROM quiz"))
        session.exec(text("DELETE FROM user"))
        session.commit()


# ============================================================================
# FASTAPI APP & TEST CLIENT
# ============================================================================


@pytest.fixture
def client():
    """Test client whose requests use the in-memory database."""

    def override_get_session():
        with Session(test_engine) as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def session():
    """Provide a database session for tests that call services directly."""
    with Session(test_engine) as session:
        yield session


def login(client, email, password=PASSWORD):
    """Sign in through the real endpoint so the session cookie is set on ``client``."""
    response = client.post("/auth/login", json={"email": email, "password": password})
    assert response.status_code == 200, response.text
    return response.json()


def as_principal(user):
    return Principal.from_user(user)


# ============================================================================
# ENTITY FIXTURES
# ============================================================================


def _create_user(email, full_name):
    with Session(test_engine) as session:
        user = User(email=email, password_hash=hash_password(PASSWORD), full_name=full_name)
        session.add(user)
        session.commit()
        session.refresh(user)
        user_id = user.id

    with Session(test_engine) as session:
        return session.get(User, user_id)


@pytest.fixture
def creator_user():
    """The quiz author (user A)."""
    return _create_user("alice@example.com", "Alice Author")


@pytest.fixture
def taker_user():
    """A second account (user B)."""
    return _create_user("b@x.com", "Bob Taker")


@pytest.fixture
def other_user():
    return _create_user("carol@example.com", "Carol Other")


def make_quiz(creator_id, title="General Knowledge", visibility="private", is_published=False, slug=None):
    with Session(test_engine) as session:
        quiz = Quiz(
            title=title,
            slug=slug,
            creator_id=creator_id,
            visibility=visibility,
            is_published=is_published,
        )
        session.add(quiz)
        session.commit()
        session.refresh(quiz)
        quiz_id = quiz.id

    with Session(test_engine) as session:
        return session.get(Quiz, quiz_id)


def add_choice_question(quiz_id, order, options, question_type="multiple_choice", points=1):
    """Insert a question directly; ``options`` is ``[(text, is_correct), ...]``."""
    with Session(test_engine) as session:
        question = Question(
            quiz_id=quiz_id,
            question_text=f"Question {order}?",
            question_type=question_type,
            points=points,
            order=order,
        )
        session.add(question)
        session.commit()
        session.refresh(question)
        for position, (option_text, is_correct) in enumerate(options, start=1):
            session.add(
                QuestionOption(
                    question_id=question.id,
                    option_text=option_text,
                    is_correct=is_correct,
                    order=position,
                )
            )
        quiz = session.get(Quiz, quiz_id)
        quiz.total_questions += 1
        session.add(quiz)
        session.commit()
        question_id = question.id

    with Session(test_engine) as session:
        return session.get(Question, question_id)


@pytest.fixture
def private_quiz(creator_user):
    return make_quiz(creator_user.id, title="Private Quiz", slug="private-quiz")


@pytest.fixture
def public_quiz(creator_user):
    return make_quiz(
        creator_user.id, title="Public Quiz", visibility="public", is_published=True, slug="public-quiz"
    )
