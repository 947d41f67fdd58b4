"""
Error taxonomy for the collection subsystem.

Provider errors are always local to one page: the caller keeps the page
cursor where it was and tries again later.
"""


class CollectorError(Exception):
    """Base class for collection errors."""


class ProviderError(CollectorError):
    """A provider request did not produce a usable page."""

    def __init__(self, provider: str, message: str):
        super().__init__(f"[{provider}] {message}")
        self.provider = provider


class ProviderUnavailable(ProviderError):
    """Transport or HTTP failure that persisted through every retry."""


class ProviderRateLimited(ProviderUnavailable):
    """The provider kept throttling us; wait longer than usual."""

    def __init__(self, provider: str, message: str, retry_after: float | None = None):
        super().__init__(provider, message)
        self.retry_after = retry_after


class MalformedResponse(ProviderError):
    """The provider answered with data that could not be understood."""


class CheckpointCorrupted(CollectorError):
    """A stored checkpoint is unreadable or would move backwards."""


class JobInFlight(CollectorError):
    """The job is being collected right now."""


class UnknownJob(CollectorError):
    """No checkpoint or queued job matches the given scope key."""
