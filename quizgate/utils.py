"""Utility functions for sanitization and slug generation."""

import html
import re

import bleach

from quizgate.auth_utils import create_slug_suffix

SLUG_MAX_LENGTH = 60
_SLUG_STRIP = re.compile(r"[^a-z0-9]+")


def sanitize_question_text(text: str) -> str:
    """Sanitize question text to prevent XSS attacks.

    Allows basic formatting tags but removes script/dangerous content.
    """
    allowed_tags = ['b', 'i', 'u', 'em', 'strong', 'p', 'br', 'code', 'pre', 'ul', 'ol', 'li']
    allowed_attributes = {}

    sanitized = bleach.clean(text, tags=allowed_tags, attributes=allowed_attributes, strip=True)
    return sanitized.strip()


def sanitize_plain_text(text: str) -> str:
    """Strip all markup, used for option text and short answers.

    The result is stored and compared as plain text, so bleach's entity
    escaping is undone: ``"R&D"`` stays ``"R&D"``.
    """
    sanitized = bleach.clean(text, tags=[], strip=True)
    return html.unescape(sanitized).strip()


def slugify_title(title: str) -> str:
    """Build a URL slug from a quiz title, e.g. ``"World Capitals!"`` -> ``"world-capitals-3fa9c1"``."""
    base = _SLUG_STRIP.sub("-", (title or "").lower()).strip("-")[:SLUG_MAX_LENGTH].strip("-")
    suffix = create_slug_suffix()
    return f"{base}-{suffix}" if base else f"quiz-{suffix}"
