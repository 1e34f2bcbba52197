"""
Startup download of the media bucket into the local root.
"""
import os
import shutil
import tempfile
from datetime import datetime
from pathlib import Path, PurePosixPath
from typing import Dict, List, Optional
from loguru import logger

from ..clients.s3_manager import S3Manager
from ..errors import BootstrapError, NotFound, SyncError
from ..models.data_models import BootstrapReport, RemoteEntry, SyncState
from .retry import RetryController
from .scanner import BOOKKEEPING_PREFIX, fingerprint_file
from .scheduler import SystemClock


class BootstrapDownloader:
    """
    Seeds the local root from the bucket before the sidecar reports ready.

    Existing local files are never overwritten: whatever is on disk at
    startup may hold writes that were not uploaded before a crash.
    """

    def __init__(self, root: str, s3_manager: S3Manager, retry: RetryController,
                 timeout: float = 600.0, clock: Optional[SystemClock] = None):
        self.root = Path(root)
        self.s3_manager = s3_manager
        self.retry = retry
        self.timeout = timeout
        self.clock = clock or SystemClock()

    def run(self, state: SyncState) -> BootstrapReport:
        """
        Download every missing object, then seed the state.

        Args:
            state: Sync state to seed with paths already in sync

        Returns:
            BootstrapReport: Counts for the run

        Raises:
            BootstrapError: On exhausted retries, bad credentials or timeout
        """
        logger.info(f"Starting bootstrap of {self.root} from the media bucket")
        report = BootstrapReport(started_at=datetime.now())
        deadline = self.clock.monotonic() + self.timeout

        remote_entries = self._list_remote()
        report.remote_objects = len(remote_entries)
        logger.info(f"Found {report.remote_objects} remote objects")

        downloaded: Dict[str, str] = {}
        seedable: List[RemoteEntry] = []

        for remote in remote_entries:
            if self.clock.monotonic() > deadline:
                raise BootstrapError(f"Bootstrap exceeded {self.timeout}s timeout "
                                     f"after {report.downloaded} downloads")

            target = self._local_path(remote.key)
            if target is None:
                logger.warning(f"Skipping object with unsafe key: {remote.key}")
                report.skipped += 1
                continue

            if os.path.lexists(target):
                logger.debug(f"Local copy present, leaving untouched: {remote.key}")
                report.kept_local += 1
                seedable.append(remote)
                continue

            try:
                fingerprint = self._download(remote, target)
            except NotFound:
                logger.warning(f"Object vanished before download: {remote.key}")
                report.skipped += 1
                continue
            seedable.append(remote)
            if fingerprint is None:
                report.kept_local += 1
                continue
            downloaded[remote.key] = fingerprint
            report.downloaded += 1
            report.total_bytes += remote.size

        report.seeded = self._seed_state(state, seedable, downloaded)

        report.duration = (datetime.now() - report.started_at).total_seconds()
        logger.info(f"Bootstrap completed - Downloaded: {report.downloaded}, "
                    f"Kept local: {report.kept_local}, Skipped: {report.skipped}, "
                    f"Seeded: {report.seeded}, Duration: {report.duration:.2f} seconds")
        return report

    def _list_remote(self) -> List[RemoteEntry]:
        try:
            return self.retry.call(lambda: list(self.s3_manager.list_objects()), 'list media bucket')
        except SyncError as e:
            raise BootstrapError(f"Cannot list the media bucket: {e}") from e

    def _local_path(self, key: str) -> Optional[Path]:
        """Map a key to a path under the root, or None if it would escape it."""
        if not key or key.startswith('/') or '\\' in key:
            return None
        parts = PurePosixPath(key).parts
        if any(part in ('..', '.') for part in parts):
            return None
        if parts[-1].startswith(BOOKKEEPING_PREFIX):
            return None
        return self.root.joinpath(*parts)

    def _download(self, remote: RemoteEntry, target: Path) -> Optional[str]:
        """Fetch one object into place via a temp file. Returns its fingerprint, or None if local won."""
        def _fetch() -> Optional[str]:
            target.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=target.parent, prefix=BOOKKEEPING_PREFIX, suffix='.part')
            try:
                with os.fdopen(fd, 'wb') as out:
                    body = self.s3_manager.get_object_stream(remote.key)
                    try:
                        shutil.copyfileobj(body, out)
                    finally:
                        body.close()
                # link() refuses an existing target, unlike rename()
                try:
                    os.link(tmp_path, target)
                except FileExistsError:
                    logger.debug(f"Local copy appeared during download, keeping it: {remote.key}")
                    return None
            finally:
                if os.path.exists(tmp_path):
                    os.unlink(tmp_path)
            return fingerprint_file(target)

        try:
            fingerprint = self.retry.call(_fetch, f"download {remote.key}")
        except NotFound:
            raise
        except SyncError as e:
            raise BootstrapError(f"Cannot download {remote.key}: {e}") from e
        except OSError as e:
            raise BootstrapError(f"Cannot write {target}: {e}") from e

        logger.debug(f"Downloaded {remote.key} ({remote.size} bytes)")
        return fingerprint

    def _seed_state(self, state: SyncState, remotes: List[RemoteEntry], downloaded: Dict[str, str]) -> int:
        """Mark as synced every local file whose content matches its object."""
        seeded = 0
        for remote in remotes:
            target = self.root / remote.key
            try:
                if target.is_symlink() or not target.is_file():
                    continue
                st = target.stat()
                fingerprint = downloaded.get(remote.key) or fingerprint_file(target)
            except FileNotFoundError:
                continue
            except OSError as e:
                logger.warning(f"Cannot read {remote.key} while seeding state: {e}")
                continue

            if remote.key in downloaded or fingerprint == remote.fingerprint:
                state.mark_synced(remote.key, fingerprint, remote.last_modified, st.st_size, st.st_mtime_ns)
                seeded += 1
            else:
                logger.info(f"Local copy differs from remote, will upload: {remote.key}")
        return seeded
