"""
Local tree scanner for the media directory.
"""
import fnmatch
import hashlib
import os
import stat
from pathlib import Path
from typing import Iterable, List, Optional
from loguru import logger

from ..errors import LocalIOError
from ..models.data_models import LocalEntry, ScanResult
from .scheduler import SystemClock

# Names owned by the sidecar itself (download temp files, markers)
BOOKKEEPING_PREFIX = '.media-sync-'

BUFFER_SIZE = 65536


def fingerprint_file(file_path) -> str:
    """
    MD5 hex digest of a file, matching the ETag of a single-part upload.

    Raises:
        FileNotFoundError: If the file vanished
        OSError: If the file can't be read
    """
    hasher = hashlib.md5()
    with open(file_path, 'rb') as f:
        while True:
            data = f.read(BUFFER_SIZE)
            if not data:
                break
            hasher.update(data)
    return hasher.hexdigest()


class LocalTreeScanner:
    """Walks the local root and lists settled regular files."""

    def __init__(self, root: str, settle_window: float = 5.0,
                 exclude_patterns: Optional[Iterable[str]] = None,
                 clock: Optional[SystemClock] = None):
        self.root = Path(root)
        self.settle_window = settle_window
        self.exclude_patterns = list(exclude_patterns or [])
        self.clock = clock or SystemClock()

    def is_excluded(self, rel_path: str) -> bool:
        name = rel_path.rsplit('/', 1)[-1]
        if name.startswith(BOOKKEEPING_PREFIX):
            return True
        return any(
            fnmatch.fnmatch(rel_path, pattern) or fnmatch.fnmatch(name, pattern)
            for pattern in self.exclude_patterns
        )

    def scan(self) -> ScanResult:
        """
        Produce a best-effort snapshot of the tree.

        Files modified within the settle window are reported as unsettled
        rather than listed. Entries disappearing mid-scan are reported as
        vanished, and directories or files that cannot be read as unreadable.

        Raises:
            LocalIOError: If the root itself cannot be read
        """
        if not self.root.is_dir():
            raise LocalIOError(f"Local root is not a directory: {self.root}")

        result = ScanResult()
        cutoff_ns = int((self.clock.time() - self.settle_window) * 1_000_000_000)
        self._scan_dir(self.root, '', cutoff_ns, result)

        logger.debug(f"Scanned {self.root}: {len(result.entries)} settled, "
                     f"{len(result.unsettled)} unsettled, {len(result.vanished)} vanished, "
                     f"{len(result.unreadable)} unreadable")
        return result

    def _scan_dir(self, directory: Path, rel_dir: str, cutoff_ns: int, result: ScanResult) -> None:
        try:
            with os.scandir(directory) as it:
                children: List[os.DirEntry] = list(it)
        except FileNotFoundError:
            if rel_dir:
                result.vanished.add(rel_dir)
                return
            raise LocalIOError(f"Local root vanished: {self.root}")
        except OSError as e:
            if not rel_dir:
                raise LocalIOError(f"Cannot read local root {self.root}: {e}") from e
            logger.warning(f"Cannot read directory {rel_dir}: {e}")
            result.unreadable.add(rel_dir)
            return

        for child in children:
            rel_path = f"{rel_dir}/{child.name}" if rel_dir else child.name
            if self.is_excluded(rel_path):
                continue
            try:
                if child.is_symlink():
                    continue
                st = child.stat(follow_symlinks=False)
            except FileNotFoundError:
                result.vanished.add(rel_path)
                continue
            except OSError as e:
                logger.warning(f"Cannot stat {rel_path}: {e}")
                result.unreadable.add(rel_path)
                continue

            if stat.S_ISDIR(st.st_mode):
                self._scan_dir(Path(child.path), rel_path, cutoff_ns, result)
            elif stat.S_ISREG(st.st_mode):
                if st.st_mtime_ns > cutoff_ns:
                    result.unsettled.add(rel_path)
                else:
                    result.entries.append(LocalEntry(
                        path=rel_path,
                        size=st.st_size,
                        mtime_ns=st.st_mtime_ns
                    ))
