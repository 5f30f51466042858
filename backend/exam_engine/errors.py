"""
Domain error taxonomy.

Services raise these; the handler registered in main.py turns them into
short JSON error responses. Limit breaches (resume/warning caps) are not
errors: they become a successful auto-submit with a termination reason.
"""


class ExamEngineError(Exception):
    """Base class for all errors surfaced to API callers."""

    code = "error"
    status_code = 400

    def __init__(self, message: str, status_code: int = None, **extra):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.extra = extra

    def to_dict(self) -> dict:
        return {"error": self.message, "code": self.code, **self.extra}


class Unauthenticated(ExamEngineError):
    code = "unauthenticated"
    status_code = 401


class AccessDenied(ExamEngineError):
    code = "access-denied"
    status_code = 403


class NotFound(ExamEngineError):
    code = "not-found"
    status_code = 404


class NotYetOpen(ExamEngineError):
    code = "not-yet-open"
    status_code = 400


class InvalidState(ExamEngineError):
    code = "invalid-state"
    status_code = 400


class ValidationFailed(ExamEngineError):
    code = "validation"
    status_code = 400
