# Services package
from .retry import RetryController
from .scheduler import IntervalScheduler, SystemClock
from .scanner import LocalTreeScanner, fingerprint_file
from .change_detector import ChangeDetector
from .bootstrap import BootstrapDownloader
from .sync_engine import SyncLoopEngine, EngineState
from .sync_service import SyncService

__all__ = [
    'RetryController',
    'IntervalScheduler',
    'SystemClock',
    'LocalTreeScanner',
    'fingerprint_file',
    'ChangeDetector',
    'BootstrapDownloader',
    'SyncLoopEngine',
    'EngineState',
    'SyncService'
]
