from __future__ import annotations


class PipelineError(Exception):
    """Base pipeline exception."""


class ConfigError(PipelineError):
    """Raised when required configuration is missing or invalid."""


class FetchError(PipelineError):
    """Raised when a source page could not be fetched."""

    kind = "unknown"

    def __init__(
        self,
        message: str,
        *,
        source_url: str = "",
        page: int | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.source_url = source_url
        self.page = page
        self.status_code = status_code


class FetchTimeoutError(FetchError):
    kind = "timeout"


class FetchConnectionError(FetchError):
    kind = "connection"


class FetchStatusError(FetchError):
    kind = "status"


class FetchPayloadError(FetchError):
    """Raised when a page body is not json or has an unexpected shape."""

    kind = "payload"


class ParseError(PipelineError):
    """Raised when a source document cannot be normalized."""

    def __init__(self, reason: str, *, identifier: str = "", source_url: str = "") -> None:
        super().__init__(reason)
        self.reason = reason
        self.identifier = identifier
        self.source_url = source_url


class RejectionThresholdError(ParseError):
    """Raised when the rejected share of a run exceeds the configured ratio."""

    def __init__(self, message: str) -> None:
        super().__init__(message)


class StoreError(PipelineError):
    """Raised when the store transaction failed and was rolled back."""

    def __init__(self, message: str, *, transient: bool = False) -> None:
        super().__init__(message)
        self.transient = transient


class RunTimeoutError(PipelineError):
    """Raised when a run exceeds its time budget."""
