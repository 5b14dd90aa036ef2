from typing import Optional


class StockBrainError(Exception):
    """Base class for command engine failures."""


class Unauthorized(StockBrainError):
    pass


class Forbidden(StockBrainError):
    pass


class OrganizationNotFound(StockBrainError):
    pass


class RateLimited(StockBrainError):
    def __init__(self, message: str = "Too many requests. Please wait a moment and try again.", reset_at: float = 0.0):
        super().__init__(message)
        self.reset_at = reset_at


class TierLimitExceeded(StockBrainError):
    def __init__(self, message: str, current: Optional[int] = None, limit: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.current = current
        self.limit = limit


class ParseFailure(StockBrainError):
    """The text-understanding call produced no usable structure."""


class PersistenceError(StockBrainError):
    pass


class InterpreterUnavailable(StockBrainError):
    """The text-understanding service could not be reached after retries."""
