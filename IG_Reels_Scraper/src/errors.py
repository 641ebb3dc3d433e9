from typing import Any, Optional


class ConfigError(RuntimeError):
    """Raised when scraper configuration is missing or invalid."""


class StorageError(RuntimeError):
    """Raised when reading or writing records in SQLite fails."""


class SessionFatalError(RuntimeError):
    """Raised when a scraping session cannot continue and the caller must react."""

    def __init__(self, message: str, result: Optional[Any] = None):
        super().__init__(message)
        # Partial SessionResult collected before the session ended
        self.result = result


class AccountBlockedError(SessionFatalError):
    """Raised when the platform suspended or blocked the account mid-session."""
