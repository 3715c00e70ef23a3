"""Exception hierarchy shared across pixelmend modules."""

from __future__ import annotations


class PixelmendError(Exception):
    """Base class for all pixelmend errors."""


class ConfigError(PixelmendError):
    """pixelmend.toml could not be parsed or holds an unknown option."""


class CapabilityError(PixelmendError):
    """An external capability (render, diff, generation) failed."""

    def __init__(self, capability: str, message: str):
        super().__init__(f"{capability}: {message}")
        self.capability = capability


class CapabilityTimeout(CapabilityError):
    """An external capability did not answer within its timeout."""

    def __init__(self, capability: str, timeout: float):
        super().__init__(capability, f"timed out after {timeout:g}s")
        self.timeout = timeout


class StaleSnapshotError(PixelmendError):
    """The target file no longer contains the content a candidate was built from."""


class LocalizationError(PixelmendError):
    """A diff image is missing or cannot be parsed."""


class FatalAttemptError(PixelmendError):
    """A lock, backup or knowledge-base write failed; the issue must be abandoned."""

    def __init__(self, reason: str, message: str = ""):
        super().__init__(message or reason)
        self.reason = reason
