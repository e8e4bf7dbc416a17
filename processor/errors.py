"""Exception types raised across the sync pipeline."""


class SyncError(Exception):
    """Base class for all sync failures."""


class ConfigError(SyncError):
    """A required setting is missing or invalid."""


class AuthError(SyncError):
    """Login to the groupware failed or no session cookie was issued."""


class FetchError(SyncError):
    """A groupware page could not be retrieved or parsed."""


class DecodeError(FetchError):
    """A fetched page could not be decoded from its legacy encoding."""


class ExtractionError(SyncError):
    """Markup for a single event did not have the expected shape."""


class RateLimitError(SyncError):
    """The remote calendar asked us to slow down."""


class RemoteError(SyncError):
    """Any other remote calendar API failure."""
