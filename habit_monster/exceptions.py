"""
Error hierarchy for the Habit Monster backend.

Each error carries an HTTP status code so the API layer can map it straight
to a response: 400 for validation/conflict/precondition problems, 401 for bad
credentials, 404 for unknown ids and 500 for anything internal.
"""


class HabitMonsterError(Exception):
    """Base class for all domain errors."""

    status_code = 500

    def __init__(self, message, details=None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self):
        return {"error": self.message}

    def __repr__(self):
        return f"{self.__class__.__name__}(message={self.message!r}, details={self.details!r})"


class ValidationError(HabitMonsterError):
    """Missing or malformed input."""

    status_code = 400


class AuthenticationError(HabitMonsterError):
    status_code = 401


class NotFoundError(HabitMonsterError):
    status_code = 404


class ConflictError(HabitMonsterError):
    """Duplicate email/friend code, duplicate request, already friends, self-friending."""

    status_code = 400


class DomainPreconditionError(HabitMonsterError):
    """The entity is not in a state that allows the requested action."""

    status_code = 400


class InvalidTransitionError(DomainPreconditionError):
    def __init__(self, current, target):
        super().__init__(
            f"Cannot move battle from '{current}' to '{target}'",
            details={"from": str(current), "to": str(target)},
        )


class InternalError(HabitMonsterError):
    status_code = 500
