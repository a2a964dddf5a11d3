from typing import Optional

TRANSIENT_MARKERS = ("503", "429", "overloaded", "unavailable", "rate limit")
TRANSIENT_STATUS_CODES = frozenset({429, 500, 502, 503, 504, 529})


def is_transient_message(text: str) -> bool:
    """Return True if an error message signals overload or unavailability."""
    lowered = (text or "").lower()
    return any(marker in lowered for marker in TRANSIENT_MARKERS)


class CopilotError(Exception):
    """Base exception class for the meeting copilot routing engine."""
    pass


class ConfigError(CopilotError):
    """Raised when there is an error in a configuration file."""
    pass


class ProviderError(CopilotError):
    """Raised when a single attempt against a backend fails."""

    def __init__(
        self,
        message: str,
        provider: Optional[str] = None,
        transient: Optional[bool] = None,
        status_code: Optional[int] = None,
    ):
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code
        if transient is None:
            transient = (status_code in TRANSIENT_STATUS_CODES) or is_transient_message(message)
        self.transient = transient

    @property
    def kind(self) -> str:
        return "transient" if self.transient else "permanent"


class InvalidResponseError(ProviderError):
    """Raised when a reply is empty or hedging. Always retried by rotation."""

    def __init__(self, message: str, provider: Optional[str] = None):
        super().__init__(message, provider=provider, transient=True)


class TemplateCompileError(CopilotError):
    """Raised when a custom endpoint invocation cannot be compiled."""
    pass


class SummaryGenerationError(CopilotError):
    """Raised when every step of the summary fallback ladder failed."""
    pass
