class ValidationError(ValueError):
    pass


class DuplicateBudgetError(ValidationError):
    pass


class NotFoundError(ValueError):
    pass


class AuthorizationError(ValueError):
    """The record exists but belongs to another owner."""


class StoreError(RuntimeError):
    """The backing store is unreachable or returned a fault."""
