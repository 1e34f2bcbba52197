"""
Error taxonomy for the media sync sidecar.
"""


class SyncError(Exception):
    """Base class for all sync errors."""
    kind = "error"


class NotFound(SyncError):
    """The requested object or file does not exist."""
    kind = "not_found"


class Unauthorized(SyncError):
    """Credentials are missing, invalid, expired or lack permission."""
    kind = "unauthorized"


class BucketMissing(Unauthorized):
    """The configured bucket does not exist. Never retried, never a skip."""


class Unavailable(SyncError):
    """Transient network or service failure, including timeouts."""
    kind = "unavailable"


class LocalIOError(SyncError):
    """A local filesystem read or write failed."""
    kind = "local_io"


class ConfigError(SyncError):
    """Invalid settings. Fatal at startup."""
    kind = "config"


class BootstrapError(SyncError):
    """Bootstrap could not seed the local tree. Fatal at startup."""
    kind = "bootstrap"
