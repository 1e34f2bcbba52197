"""
Media Sync - keeps a pod-local media directory in sync with an S3 bucket.
"""

from .services.sync_service import SyncService
from .models.config import SyncConfig, S3Config
from .models.data_models import LocalEntry, RemoteEntry, SyncState, SyncCycleReport

__version__ = "1.0.0"
__all__ = [
    "SyncService",
    "SyncConfig",
    "S3Config",
    "LocalEntry",
    "RemoteEntry",
    "SyncState",
    "SyncCycleReport"
]
