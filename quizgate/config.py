"""Runtime configuration read from the environment (and an optional .env file)."""

import os

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./quizgate.db")
    SECRET_KEY = os.getenv("SECRET_KEY", "CHANGE_ME_TO_A_RANDOM_SECRET")
    SQL_ECHO = _env_bool("SQL_ECHO", False)
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

    # Public leaderboard page size; also the hard cap for ?limit=
    LEADERBOARD_LIMIT = int(os.getenv("LEADERBOARD_LIMIT", 100))

    # When enabled only the quiz creator may invite people or list a quiz's invitations
    INVITE_REQUIRES_OWNER = _env_bool("INVITE_REQUIRES_OWNER", False)

    SEED_DEMO_USER = _env_bool("SEED_DEMO_USER", False)


config = Config()
