"""Email normalisation and validation for accounts and invitations."""

import re
from typing import Optional, Tuple

# Regex pattern for basic email format validation
EMAIL_PATTERN = re.compile(
    r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$'
)


def normalize_email(email: Optional[str]) -> str:
    """Trim and lowercase an address; ``None`` becomes an empty string."""
    return (email or "").strip().lower()


def is_valid_email(email: str) -> Tuple[bool, str]:
    """
    Validate email format.

    Args:
        email: Email address to validate

    Returns:
        Tuple of (is_valid, error_message)
        - is_valid: True if email is valid, False otherwise
        - error_message: Error message if invalid, empty string if valid
    """
    if not email:
        return False, "Email address is required."

    email = normalize_email(email)

    if len(email) > 255:
        return False, "Email address is too long."

    if not EMAIL_PATTERN.match(email):
        return False, "Please enter a valid email address format."

    local_part, domain = email.split("@", 1)
    if len(local_part) > 64:
        return False, "Invalid email address format."
    if ".." in domain or domain.startswith(".") or domain.startswith("-"):
        return False, "Invalid email address format."

    return True, ""


def email_local_part(email: Optional[str]) -> str:
    """Return the part of an address before the ``@`` (the whole string if there is none)."""
    return (email or "").split("@", 1)[0]
