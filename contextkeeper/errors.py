"""Exception hierarchy for contextkeeper."""


class ContextKeeperError(Exception):
    """Base class for all contextkeeper errors."""

    def __init__(self, reason: str | None = None):
        self.reason = reason
        super().__init__(reason)


class ConfigurationError(ContextKeeperError):
    """Raised when a subsystem is used without (or with invalid) configuration."""


class SummarizationError(ContextKeeperError):
    """Raised when the completion provider fails to produce a summary."""


class SummarizationDisabledError(SummarizationError):
    """Raised when summarization is requested but disabled in config."""


class SummarizationTimeoutError(SummarizationError):
    """Raised when the completion provider does not answer within the timeout."""

    def __init__(self, timeout: float):
        self.timeout = timeout
        super().__init__(f"Summarization timed out after {timeout}s")


class SnapshotError(ContextKeeperError):
    """Raised when a snapshot cannot be written."""


class PatternFileError(ContextKeeperError):
    """Raised when an extraction pattern file is missing or malformed."""
