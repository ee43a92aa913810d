"""Custom exceptions for clearer error handling across athwatch."""


class AthWatchError(Exception):
    """Base exception for all athwatch errors."""


class ConfigError(AthWatchError, ValueError):
    """Raised when environment or CLI configuration is invalid."""


class SnapshotError(AthWatchError):
    """Raised when market snapshot retrieval fails."""


class LedgerError(AthWatchError):
    """Raised when a ledger read or write fails."""


class DeliveryError(AthWatchError):
    """Raised when a sender rejects a notification outright."""


class SchedulerError(AthWatchError):
    """Raised when the background scheduler cannot be started."""


class RecipientError(AthWatchError):
    """Raised when the recipient directory cannot be read."""
