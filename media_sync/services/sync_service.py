"""
Sidecar orchestrator: bootstrap, readiness, and the steady-state loop.
"""
import threading
from datetime import datetime
from pathlib import Path
from typing import Dict, Any, Optional
from loguru import logger

from ..clients.s3_manager import S3Manager
from ..models.config import SyncConfig
from ..models.data_models import BootstrapReport, SyncCycleReport, SyncState
from .bootstrap import BootstrapDownloader
from .change_detector import ChangeDetector
from .retry import RetryController
from .scanner import LocalTreeScanner
from .scheduler import IntervalScheduler, SystemClock
from .sync_engine import SyncLoopEngine


class SyncService:
    """
    Main synchronization service that wires the bucket client, scanner,
    detector, bootstrap downloader and sync loop from one SyncConfig.
    """

    def __init__(self, config: SyncConfig, s3_manager: Optional[S3Manager] = None,
                 clock: Optional[SystemClock] = None, sleep=None):
        """
        Initialize sync service with configuration.

        Args:
            config: SyncConfig containing all service configuration
            s3_manager: Bucket client; built from config.media_s3 when omitted
            clock: Time source for the scanner, bootstrap and scheduler
            sleep: Backoff sleep function for the retry controller
        """
        self.config = config
        self.clock = clock or SystemClock()
        self.stop_event = threading.Event()
        self.state = SyncState()
        self.ready = False

        self.s3_manager = s3_manager or S3Manager(config.media_s3, timeout=config.remote_call_timeout)
        self.retry = RetryController(
            max_attempts=config.retry_max_attempts,
            backoff_base=config.retry_backoff_base,
            backoff_cap=config.retry_backoff_cap,
            sleep=sleep or (lambda seconds: self.stop_event.wait(seconds)),
            stop_event=self.stop_event
        )
        self.scanner = LocalTreeScanner(
            config.local_root,
            settle_window=config.settle_window,
            exclude_patterns=config.exclude_patterns,
            clock=self.clock
        )
        self.detector = ChangeDetector(config.local_root)
        self.bootstrapper = BootstrapDownloader(
            config.local_root,
            self.s3_manager,
            self.retry,
            timeout=config.bootstrap_timeout,
            clock=self.clock
        )
        self.engine = SyncLoopEngine(
            config.local_root,
            self.s3_manager,
            self.scanner,
            self.detector,
            self.retry,
            self.state,
            stop_event=self.stop_event,
            upload_concurrency=config.upload_concurrency,
            propagate_deletes=config.propagate_deletes,
            shutdown_grace_period=config.shutdown_grace_period
        )
        self.scheduler = IntervalScheduler(config.sync_interval, clock=self.clock)

        logger.info("SyncService initialized successfully")

    def run_bootstrap(self) -> BootstrapReport:
        """
        Seed the local root from the bucket.

        Raises:
            BootstrapError: If the local media set could not be completed
        """
        return self.bootstrapper.run(self.state)

    def run_sync_cycle(self) -> SyncCycleReport:
        return self.engine.run_cycle()

    def run_forever(self, max_cycles: Optional[int] = None) -> int:
        """
        Bootstrap, signal readiness, then sync until shutdown is requested.

        Args:
            max_cycles: Stop after this many cycles (None runs until shutdown)

        Returns:
            int: Number of cycles run
        """
        self.run_bootstrap()
        self.mark_ready()
        try:
            logger.info(f"Entering sync loop - interval: {self.config.sync_interval} seconds")
            cycles = self.scheduler.run(self.engine.run_cycle, self.stop_event, max_runs=max_cycles)
        finally:
            self.clear_ready()
        logger.info(f"Sync loop stopped after {cycles} cycles")
        return cycles

    def request_shutdown(self) -> None:
        """Stop scheduling new cycles and uploads."""
        if not self.stop_event.is_set():
            logger.info("Shutdown requested")
        self.stop_event.set()

    def mark_ready(self) -> None:
        self.ready = True
        if self.config.readiness_file:
            path = Path(self.config.readiness_file)
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(datetime.now().isoformat())
            logger.info(f"Bootstrap succeeded - readiness signalled at {path}")
        else:
            logger.info("Bootstrap succeeded - sidecar ready")

    def clear_ready(self) -> None:
        self.ready = False
        if self.config.readiness_file:
            path = Path(self.config.readiness_file)
            try:
                path.unlink()
            except FileNotFoundError:
                pass

    def get_sync_status(self) -> Dict[str, Any]:
        """
        Get current sidecar status and configuration summary.

        Returns:
            Dictionary containing service status information
        """
        s3 = self.config.media_s3
        return {
            'service_status': 'ready' if self.ready else 'starting',
            'engine_state': self.engine.engine_state.value,
            'cycles': self.engine.cycles,
            'synced_paths': len(self.state),
            'local_root': self.config.local_root,
            'bucket': s3.bucket,
            'prefix': s3.normalized_prefix,
            'region': s3.region,
            'credentials': 'static' if s3.uses_static_credentials else 'ambient',
            'propagate_deletes': self.config.propagate_deletes,
            'sync_interval': self.config.sync_interval
        }
