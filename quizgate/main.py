"""FastAPI entrypoint for the quiz service."""

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.sessions import SessionMiddleware

from quizgate.auth_utils import hash_password
from quizgate.config import config
from quizgate.database import create_db_and_tables, engine
from quizgate.errors import QuizGateError, Unexpected
from quizgate.logging_config import configure_logging
from quizgate.models import User
from quizgate.routers import auth as auth_router_module
from quizgate.routers import invitations as invitations_router_module
from quizgate.routers import leaderboard as leaderboard_router_module
from quizgate.routers import quizzes as quizzes_router_module
from quizgate.routers import submissions as submissions_router_module

logger = configure_logging()

app = FastAPI(title="QuizGate")


@app.exception_handler(QuizGateError)
async def quizgate_error_handler(request: Request, exc: QuizGateError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Malformed bodies and wrong field types answer 400 with one line per problem."""
    details = []
    for error in exc.errors():
        field_path = [str(part) for part in error.get("loc", ()) if part != "body"]
        message = error.get("msg", "Invalid input")
        details.append(f"{'.'.join(field_path)}: {message}" if field_path else message)
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"error": "Invalid request body", "details": details},
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(SQLAlchemyError)
async def database_exception_handler(request: Request, exc: SQLAlchemyError):
    logger.exception("Unhandled database error on %s %s", request.method, request.url.path)
    error = Unexpected(str(getattr(exc, "orig", None) or exc).splitlines()[0])
    return JSONResponse(status_code=error.status_code, content=error.to_dict())


# Session middleware for simple cookie-based authentication
app.add_middleware(SessionMiddleware, secret_key=config.SECRET_KEY)

# Routers
app.include_router(auth_router_module.router, prefix="/auth", tags=["auth"])
app.include_router(quizzes_router_module.router, tags=["quizzes"])
app.include_router(submissions_router_module.router, tags=["submissions"])
app.include_router(invitations_router_module.router, tags=["invitations"])
app.include_router(leaderboard_router_module.router, tags=["leaderboard"])


@app.on_event("startup")
def on_startup():
    """Initialize database schema and optionally seed a demo account."""
    create_db_and_tables()
    if not config.SEED_DEMO_USER:
        return
    with Session(engine) as session:
        existing = session.exec(select(User).where(User.email == "demo@example.com")).first()
        if not existing:
            session.add(
                User(
                    email="demo@example.com",
                    password_hash=hash_password("demo12345"),
                    full_name="Demo User",
                )
            )
            session.commit()
            logger.info("Seeded demo user: demo@example.com")
