"""
Models package for the media sync sidecar.
"""
from .data_models import (
    LocalEntry,
    RemoteEntry,
    SyncState,
    SyncStateEntry,
    ScanResult,
    ChangeSet,
    FailedPath,
    SyncCycleReport,
    BootstrapReport
)
from .config import S3Config, SyncConfig

__all__ = [
    'LocalEntry',
    'RemoteEntry',
    'SyncState',
    'SyncStateEntry',
    'ScanResult',
    'ChangeSet',
    'FailedPath',
    'SyncCycleReport',
    'BootstrapReport',
    'S3Config',
    'SyncConfig'
]
