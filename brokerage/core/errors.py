"""Domain error taxonomy shared by all services."""


class CoreError(Exception):
    """Base exception for domain outcomes the caller is expected to handle."""

    code = "core_error"

    def __init__(self, message: str, *, code: str | None = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code


class AuthorizationError(CoreError):
    """Principal is outside the scope required for the operation."""

    code = "forbidden"


class NotFoundError(CoreError):
    """Referenced entity does not exist."""

    code = "not_found"


class ValidationError(CoreError):
    """Input is malformed or the target is ineligible."""

    code = "invalid"


class InvalidTransitionError(CoreError):
    """Status change (or lifecycle action) not allowed from the current state."""

    code = "invalid_transition"

    def __init__(self, message: str, *, from_status: str | None = None, to_status: str | None = None):
        super().__init__(message)
        self.from_status = from_status
        self.to_status = to_status


class ConflictError(CoreError):
    """A concurrent writer changed the row first (lost compare-and-set)."""

    code = "conflict"


class ExpiredError(CoreError):
    """Invitation token is past its expiry."""

    code = "expired"


class AlreadyExistsError(CoreError):
    """Duplicate invitation or account."""

    code = "already_exists"


class StoreUnavailableError(RuntimeError):
    """
    Persistence failed for infrastructure reasons (connection, deadlock).

    Deliberately not a CoreError: callers retry these, never show them as a
    business outcome.
    """
