"""
Configuration classes for the media sync sidecar.
"""
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from ..errors import ConfigError


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == '':
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}")


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == '':
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {raw!r}")


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == '':
        return default
    value = raw.strip().lower()
    if value in ('1', 'true', 'yes', 'on'):
        return True
    if value in ('0', 'false', 'no', 'off'):
        return False
    raise ConfigError(f"{name} must be a boolean, got {raw!r}")


@dataclass
class S3Config:
    """Configuration for the media bucket connection."""
    bucket: str
    region: str
    prefix: str = ''
    endpoint: Optional[str] = None
    access_key: Optional[str] = None
    secret_key: Optional[str] = None

    @property
    def uses_static_credentials(self) -> bool:
        return bool(self.access_key and self.secret_key)

    @property
    def normalized_prefix(self) -> str:
        """Prefix with no leading slash and exactly one trailing slash (or empty)."""
        prefix = self.prefix.strip().strip('/')
        return f"{prefix}/" if prefix else ''

    def validate(self) -> None:
        if not self.bucket:
            raise ConfigError("Bucket name is required")
        if not self.region:
            raise ConfigError("Bucket region is required")
        if bool(self.access_key) != bool(self.secret_key):
            raise ConfigError("Access key and secret key must be set together")

    @classmethod
    def from_env(cls, prefix: str) -> 'S3Config':
        """Create S3Config from environment variables with given prefix."""
        return cls(
            bucket=os.getenv(f'{prefix}_S3_BUCKET', ''),
            region=os.getenv(f'{prefix}_S3_REGION', ''),
            prefix=os.getenv(f'{prefix}_S3_PREFIX', ''),
            endpoint=os.getenv(f'{prefix}_S3_ENDPOINT') or None,
            access_key=os.getenv(f'{prefix}_S3_ACCESS_KEY') or None,
            secret_key=os.getenv(f'{prefix}_S3_SECRET_KEY') or None
        )


@dataclass
class SyncConfig:
    """Main configuration for the sync sidecar."""
    media_s3: S3Config
    local_root: str
    sync_interval: float = 30.0
    propagate_deletes: bool = False
    settle_window: float = 5.0
    upload_concurrency: int = 4
    retry_max_attempts: int = 5
    retry_backoff_base: float = 0.5
    retry_backoff_cap: float = 30.0
    remote_call_timeout: float = 60.0
    shutdown_grace_period: float = 20.0
    bootstrap_timeout: float = 600.0
    readiness_file: Optional[str] = '/tmp/media-sync.ready'
    exclude_patterns: List[str] = field(default_factory=list)

    def validate(self) -> None:
        """
        Check the configuration before anything touches the bucket.

        Raises:
            ConfigError: If any setting is missing or out of range
        """
        self.media_s3.validate()

        if not self.local_root:
            raise ConfigError("LOCAL_ROOT is required")
        if not Path(self.local_root).is_dir():
            raise ConfigError(f"LOCAL_ROOT is not a directory: {self.local_root}")

        if self.sync_interval <= 0:
            raise ConfigError("SYNC_INTERVAL must be positive")
        if self.settle_window < 0:
            raise ConfigError("SETTLE_WINDOW must not be negative")
        if self.upload_concurrency < 1:
            raise ConfigError("UPLOAD_CONCURRENCY must be at least 1")
        if self.retry_max_attempts < 1:
            raise ConfigError("RETRY_MAX_ATTEMPTS must be at least 1")
        if self.retry_backoff_base < 0 or self.retry_backoff_cap < self.retry_backoff_base:
            raise ConfigError("Backoff base must be >= 0 and not exceed the backoff cap")
        for name in ('remote_call_timeout', 'shutdown_grace_period', 'bootstrap_timeout'):
            if getattr(self, name) <= 0:
                raise ConfigError(f"{name.upper()} must be positive")

    @classmethod
    def from_env(cls) -> 'SyncConfig':
        """Create and validate SyncConfig from environment variables."""
        patterns = os.getenv('EXCLUDE_PATTERNS', '')
        config = cls(
            media_s3=S3Config.from_env('MEDIA'),
            local_root=os.getenv('LOCAL_ROOT', ''),
            sync_interval=_env_float('SYNC_INTERVAL', 30.0),
            propagate_deletes=_env_bool('PROPAGATE_DELETES', False),
            settle_window=_env_float('SETTLE_WINDOW', 5.0),
            upload_concurrency=_env_int('UPLOAD_CONCURRENCY', 4),
            retry_max_attempts=_env_int('RETRY_MAX_ATTEMPTS', 5),
            retry_backoff_base=_env_float('RETRY_BACKOFF_BASE', 0.5),
            retry_backoff_cap=_env_float('RETRY_BACKOFF_CAP', 30.0),
            remote_call_timeout=_env_float('REMOTE_CALL_TIMEOUT', 60.0),
            shutdown_grace_period=_env_float('SHUTDOWN_GRACE_PERIOD', 20.0),
            bootstrap_timeout=_env_float('BOOTSTRAP_TIMEOUT', 600.0),
            readiness_file=os.getenv('READINESS_FILE', '/tmp/media-sync.ready') or None,
            exclude_patterns=[p.strip() for p in patterns.split(',') if p.strip()]
        )
        config.validate()
        return config
