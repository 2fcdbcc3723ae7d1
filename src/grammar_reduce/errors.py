"""Exceptions raised by grammar-reduce."""

from __future__ import annotations


class ReductionError(RuntimeError):
    """Base class for every error the reducer reports."""


class ConfigError(ReductionError, ValueError):
    """Raised when the configuration is incomplete or contradictory."""


class ParseError(ReductionError):
    """Raised by a grammar adapter when bytes do not parse."""

    def __init__(self, message: str, *, offset: int | None = None):
        super().__init__(message)
        self.offset = offset


class LoadError(ReductionError):
    """Raised when a tracked file cannot be read or parsed at startup."""


class CandidateParseError(ParseError):
    """A candidate buffer failed to re-parse. Rejected, never fatal."""

    def __init__(self, path: str, cause: ParseError):
        super().__init__(f"{path}: {cause}", offset=cause.offset)
        self.path = path


class OracleSpawnError(ReductionError):
    """The oracle driver could not be started."""


class OracleTimeout(ReductionError):
    """The oracle driver ran past its timeout and was killed."""


class OracleAbortError(ReductionError):
    """Too many consecutive inconclusive verdicts; the driver is presumed broken."""


class FilesystemWriteError(ReductionError):
    """Writing or restoring files in the project root failed."""


class SnapshotWriteError(ReductionError):
    """Persisting a snapshot failed. Logged and skipped by the engine."""


class ResumeError(ReductionError):
    """No usable snapshot, or the resumed state no longer reproduces."""


class BaselineVerificationError(ReductionError):
    """The oracle does not reproduce on the unmodified input."""


class InvariantViolation(ReductionError):
    """An internal invariant of the reduction loop did not hold."""


__all__ = [
    "BaselineVerificationError",
    "CandidateParseError",
    "ConfigError",
    "FilesystemWriteError",
    "InvariantViolation",
    "LoadError",
    "OracleAbortError",
    "OracleSpawnError",
    "OracleTimeout",
    "ParseError",
    "ReductionError",
    "ResumeError",
    "SnapshotWriteError",
]
