"""
SiteMirror - Error types
"""

from typing import Optional


class ProxyError(Exception):
    """Base class for errors surfaced by the proxy core."""

    status_code = 500

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        if status_code is not None:
            self.status_code = status_code

    @property
    def message(self) -> str:
        return str(self)


class StrategyError(ProxyError):
    """A single transport strategy failed to obtain a response."""

    def __init__(self, strategy: str, message: str,
                 status_code: Optional[int] = None):
        super().__init__(f"{strategy}: {message}", status_code)
        self.strategy = strategy


class DispatchError(ProxyError):
    """Every transport strategy failed; carries the last observed error."""

    def __init__(self, message: str = "All request strategies failed",
                 status_code: Optional[int] = None,
                 last_error: Optional[Exception] = None):
        super().__init__(message, status_code)
        self.last_error = last_error


class ExpressionError(ValueError):
    """Raised by the challenge arithmetic evaluator on unsupported input."""
