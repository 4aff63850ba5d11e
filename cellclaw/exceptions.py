"""
CellClaw - Custom exceptions for error handling.
"""

from typing import Any, Optional


class CellClawError(Exception):
    """Base exception for all CellClaw errors."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        response: Optional[Any] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.response = response


class ConfigurationError(CellClawError):
    """Raised when credentials or settings are missing or invalid. Never retried."""

    pass


class TransportError(CellClawError):
    """Raised when a provider call fails at the network or HTTP level."""

    @property
    def is_auth_failure(self) -> bool:
        return self.status_code in (401, 403)


class ProtocolError(CellClawError):
    """Raised when a vendor response cannot be understood."""

    pass


class ToolError(CellClawError):
    """Raised inside a tool to report a failure; folded into an error result."""

    def __init__(self, message: str, tool_name: Optional[str] = None, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.tool_name = tool_name


class IterationLimitExceeded(CellClawError):
    """Raised when a submission hits the configured iteration cap."""

    def __init__(self, message: str, iterations: int = 0, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.iterations = iterations
