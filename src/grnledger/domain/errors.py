class AppError(Exception):
    """Base app error."""


class ValidationError(AppError):
    pass


class NotFoundError(AppError):
    pass


class InvalidStateError(AppError):
    """Operation not permitted for the document's current status."""


class ReferentialError(AppError):
    """A referenced product or supplier does not exist or is inactive."""


class PersistenceError(AppError):
    """Storage failure; the surrounding transaction was rolled back."""
