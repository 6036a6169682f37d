"""Error taxonomy shared by the services and mapped to HTTP responses in main."""

from typing import Optional


class QuizGateError(Exception):
    """Base class for failures that carry an HTTP status and a readable message."""

    status_code = 500
    default_message = "Something went wrong"

    def __init__(self, message: Optional[str] = None, details: Optional[str] = None):
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)

    def to_dict(self) -> dict:
        body = {"error": self.message}
        if self.details:
            body["details"] = self.details
        return body


class Unauthenticated(QuizGateError):
    status_code = 401
    default_message = "Unauthorized"


class Forbidden(QuizGateError):
    status_code = 403
    default_message = "Forbidden"


class NotFound(QuizGateError):
    status_code = 404
    default_message = "Not found"


class ValidationFailed(QuizGateError):
    status_code = 400
    default_message = "Invalid request body"


class StorePolicyDenied(QuizGateError):
    """The store refused a write because of its access rules."""

    status_code = 403
    default_message = "You don't have permission to take this quiz."


class Unexpected(QuizGateError):
    status_code = 500
