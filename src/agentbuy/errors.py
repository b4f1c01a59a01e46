"""
Domain exceptions.

Services raise these; the API layer maps them to HTTP status codes in `main.create_app`
and the admin CLI turns them into a printed message and a non-zero exit status.
"""


class AgentBuyError(Exception):
    """Base class for all application errors."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(AgentBuyError, LookupError):
    """A referenced user, profile or document does not exist."""

    status_code = 404


class ValidationError(AgentBuyError, ValueError):
    """Input violates a business rule (amount below minimum, rating out of range...)."""

    status_code = 400


class InsufficientCardsError(ValidationError):
    """The account does not hold enough research cards for the operation."""


class ConflictError(AgentBuyError, ValueError):
    """A uniqueness rule was violated (duplicate review, duplicate e-mail...)."""

    status_code = 409


class PermissionDeniedError(AgentBuyError):
    status_code = 403


class ConfigurationError(AgentBuyError, RuntimeError):
    """A required setting (e.g. the MongoDB URI) is missing or invalid."""
