"""
Check Updates - Errors
Exception types raised by the probe pipeline.
"""


class CheckError(Exception):
    """Base class for all probe errors."""


class ConfigurationError(CheckError):
    """Invalid or inconsistent configuration, detected before any service contact."""


class LockError(CheckError):
    """The lock file could not be opened or locked for a reason other than contention."""


class TimestampError(CheckError):
    """The lock file body is not a valid UNIX timestamp."""


class ProtocolError(CheckError):
    """A package service phase failed."""

    def __init__(self, message: str, phase: str = ""):
        super().__init__(message)
        self.phase = phase
