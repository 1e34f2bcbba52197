"""
Steady-state sync loop: scan, detect, upload, and update the sync state.
"""
import enum
import os
import threading
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Dict, Optional
from loguru import logger

from ..clients.s3_manager import S3Manager
from ..errors import NotFound, SyncError, Unavailable
from ..models.data_models import ChangeSet, LocalEntry, RemoteEntry, SyncCycleReport, SyncState
from .change_detector import ChangeDetector
from .retry import RetryController
from .scanner import LocalTreeScanner

POLL_INTERVAL = 0.5


class EngineState(enum.Enum):
    IDLE = 'idle'
    SCANNING = 'scanning'
    UPLOADING = 'uploading'


class UploadStatus(enum.Enum):
    UPLOADED = 'uploaded'
    SKIPPED = 'skipped'
    CHANGED = 'changed'
    FAILED = 'failed'
    ABANDONED = 'abandoned'


@dataclass
class UploadOutcome:
    entry: LocalEntry
    status: UploadStatus
    remote: Optional[RemoteEntry] = None
    error_kind: Optional[str] = None
    message: str = ''


class SyncLoopEngine:
    """
    Runs one scan-detect-upload cycle at a time against an explicit SyncState.

    Uploads within a cycle run on a bounded thread pool. The state is only
    written from the thread calling run_cycle(), after each put is confirmed.
    """

    def __init__(self, root: str, s3_manager: S3Manager, scanner: LocalTreeScanner,
                 detector: ChangeDetector, retry: RetryController, state: SyncState,
                 stop_event: Optional[threading.Event] = None, upload_concurrency: int = 4,
                 propagate_deletes: bool = False, shutdown_grace_period: float = 20.0):
        self.root = Path(root)
        self.s3_manager = s3_manager
        self.scanner = scanner
        self.detector = detector
        self.retry = retry
        self.state = state
        self.stop_event = stop_event or threading.Event()
        self.upload_concurrency = upload_concurrency
        self.propagate_deletes = propagate_deletes
        self.shutdown_grace_period = shutdown_grace_period

        self.engine_state = EngineState.IDLE
        self.cycles = 0

    def run_cycle(self) -> SyncCycleReport:
        """
        Perform one synchronization cycle.

        Per-file failures are recorded in the report and leave the state
        untouched for that path, so the next cycle retries it.

        Returns:
            SyncCycleReport: Outcome of this cycle

        Raises:
            LocalIOError: If the local root cannot be scanned
        """
        self.cycles += 1
        report = SyncCycleReport(cycle=self.cycles, started_at=datetime.now())
        started = time.monotonic()

        try:
            self.engine_state = EngineState.SCANNING
            scan = self.scanner.scan()
            report.unsettled = len(scan.unsettled)
            changes = self.detector.detect(scan, self.state)

            report.skipped += len(changes.unchanged) + len(changes.skipped)
            for path, message in changes.failed.items():
                report.record_failure(path, 'local_io', message)
            self._refresh_unchanged(changes)

            self.engine_state = EngineState.UPLOADING
            self._upload_changes(changes, report)
            self._handle_deletions(changes, report)
        finally:
            self.engine_state = EngineState.IDLE

        report.duration = time.monotonic() - started
        self._log_report(report)
        return report

    def _refresh_unchanged(self, changes: ChangeSet) -> None:
        for entry in changes.unchanged:
            known = self.state.get(entry.path)
            if known is not None and (known.size, known.mtime_ns) != (entry.size, entry.mtime_ns):
                self.state.refresh_stat(entry.path, entry.size, entry.mtime_ns)

    def _upload_changes(self, changes: ChangeSet, report: SyncCycleReport) -> None:
        candidates = changes.to_upload
        if not candidates:
            return
        if self.stop_event.is_set():
            logger.info(f"Shutdown requested - not scheduling {len(candidates)} uploads")
            report.abandoned += len(candidates)
            return

        logger.info(f"Uploading {len(changes.new)} new and {len(changes.modified)} modified files")
        executor = ThreadPoolExecutor(max_workers=self.upload_concurrency, thread_name_prefix='upload')
        pending: Dict[Future, LocalEntry] = {
            executor.submit(self._upload_one, entry): entry for entry in candidates
        }
        try:
            grace_deadline = None
            while pending:
                if self.stop_event.is_set() and grace_deadline is None:
                    logger.warning(f"Shutdown requested - waiting up to {self.shutdown_grace_period}s "
                                   f"for in-flight uploads")
                    grace_deadline = time.monotonic() + self.shutdown_grace_period
                    for future in list(pending):
                        if future.cancel():
                            pending.pop(future)
                            report.abandoned += 1

                timeout = POLL_INTERVAL
                if grace_deadline is not None:
                    timeout = grace_deadline - time.monotonic()
                    if timeout <= 0:
                        logger.warning(f"Abandoning {len(pending)} in-flight uploads")
                        report.abandoned += len(pending)
                        break

                done, _ = wait(pending, timeout=timeout, return_when=FIRST_COMPLETED)
                for future in done:
                    pending.pop(future)
                    self._apply_outcome(future.result(), report)
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

    def _upload_one(self, entry: LocalEntry) -> UploadOutcome:
        """Upload a single file. Runs on a worker thread; never touches the state."""
        if self.stop_event.is_set():
            return UploadOutcome(entry, UploadStatus.ABANDONED)

        file_path = self.root / entry.path
        try:
            with open(file_path, 'rb') as stream:
                def _put() -> RemoteEntry:
                    stream.seek(0)
                    return self.s3_manager.put_object(entry.path, stream, entry.size)

                remote = self.retry.call(_put, f"upload {entry.path}")
            st = os.stat(file_path)
        except FileNotFoundError:
            return UploadOutcome(entry, UploadStatus.SKIPPED, message='file vanished before upload')
        except NotFound as e:
            return UploadOutcome(entry, UploadStatus.SKIPPED, message=str(e))
        except Unavailable as e:
            if self.stop_event.is_set():
                return UploadOutcome(entry, UploadStatus.ABANDONED, message=str(e))
            return UploadOutcome(entry, UploadStatus.FAILED, error_kind=e.kind, message=str(e))
        except SyncError as e:
            return UploadOutcome(entry, UploadStatus.FAILED, error_kind=e.kind, message=str(e))
        except OSError as e:
            return UploadOutcome(entry, UploadStatus.FAILED, error_kind='local_io', message=str(e))

        if (st.st_size, st.st_mtime_ns) != (entry.size, entry.mtime_ns):
            return UploadOutcome(entry, UploadStatus.CHANGED, remote=remote,
                                 message='file changed during upload')
        return UploadOutcome(entry, UploadStatus.UPLOADED, remote=remote)

    def _apply_outcome(self, outcome: UploadOutcome, report: SyncCycleReport) -> None:
        entry = outcome.entry
        if outcome.status == UploadStatus.UPLOADED:
            self.state.mark_synced(entry.path, entry.fingerprint, outcome.remote.last_modified,
                                   entry.size, entry.mtime_ns)
            report.uploaded += 1
            logger.debug(f"Uploaded {entry.path}")
        elif outcome.status in (UploadStatus.SKIPPED, UploadStatus.CHANGED):
            report.skipped += 1
            logger.info(f"Skipped {entry.path}: {outcome.message}")
        elif outcome.status == UploadStatus.ABANDONED:
            report.abandoned += 1
        else:
            report.record_failure(entry.path, outcome.error_kind, outcome.message)
            if outcome.error_kind == 'unauthorized':
                logger.error(f"Upload of {entry.path} rejected - check the bucket name, "
                             f"credentials and permissions: {outcome.message}")
            else:
                logger.warning(f"Upload of {entry.path} failed ({outcome.error_kind}), "
                               f"will retry next cycle: {outcome.message}")

    def _handle_deletions(self, changes: ChangeSet, report: SyncCycleReport) -> None:
        for path in changes.deleted:
            if not self.propagate_deletes:
                logger.debug(f"Local file removed, keeping remote copy: {path}")
                self.state.forget(path)
                continue
            if self.stop_event.is_set():
                break
            try:
                self.retry.call(lambda: self.s3_manager.delete_object(path), f"delete {path}")
            except SyncError as e:
                report.record_failure(path, e.kind, str(e))
                logger.warning(f"Delete of {path} failed ({e.kind}), will retry next cycle: {e}")
                continue
            self.state.forget(path)
            report.deleted += 1
            logger.info(f"Deleted remote copy of {path}")

    def _log_report(self, report: SyncCycleReport) -> None:
        summary = (f"Sync cycle {report.cycle} completed - Uploaded: {report.uploaded}, "
                   f"Skipped: {report.skipped}, Deleted: {report.deleted}, "
                   f"Failed: {report.failed}, Abandoned: {report.abandoned}, "
                   f"Unsettled: {report.unsettled}, Duration: {report.duration:.2f} seconds")
        bound = logger.bind(report=report.to_dict())
        if report.unauthorized:
            bound.error(f"{summary} - {len(report.unauthorized)} uploads rejected as unauthorized")
        elif report.failures:
            bound.warning(summary)
        else:
            bound.info(summary)
