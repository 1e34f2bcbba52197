"""
Core data models for the media sync sidecar.
"""
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Any, Iterator, List, Optional, Set


@dataclass
class LocalEntry:
    """A regular file under the local root."""
    path: str  # relative, POSIX separators
    size: int
    mtime_ns: int
    fingerprint: Optional[str] = None


@dataclass
class RemoteEntry:
    """An object under the configured prefix."""
    key: str  # relative to the prefix
    size: int
    last_modified: datetime
    fingerprint: Optional[str] = None


@dataclass
class SyncStateEntry:
    """What was last confirmed uploaded for a path."""
    fingerprint: str
    remote_modified: Optional[datetime]
    size: int
    mtime_ns: int


class SyncState:
    """
    Last-known-synced mapping from relative path to SyncStateEntry.

    Held in memory for the process lifetime and passed explicitly to the
    components that need it. Writes are serialized by an internal lock.
    """

    def __init__(self):
        self._entries: Dict[str, SyncStateEntry] = {}
        self._lock = threading.Lock()

    def get(self, path: str) -> Optional[SyncStateEntry]:
        with self._lock:
            return self._entries.get(path)

    def mark_synced(self, path: str, fingerprint: str, remote_modified: Optional[datetime],
                    size: int, mtime_ns: int) -> None:
        with self._lock:
            self._entries[path] = SyncStateEntry(
                fingerprint=fingerprint,
                remote_modified=remote_modified,
                size=size,
                mtime_ns=mtime_ns
            )

    def refresh_stat(self, path: str, size: int, mtime_ns: int) -> None:
        """Update the cached size and mtime after a content-identical touch."""
        with self._lock:
            entry = self._entries.get(path)
            if entry is not None:
                entry.size = size
                entry.mtime_ns = mtime_ns

    def forget(self, path: str) -> None:
        with self._lock:
            self._entries.pop(path, None)

    def paths(self) -> Set[str]:
        with self._lock:
            return set(self._entries)

    def snapshot(self) -> Dict[str, SyncStateEntry]:
        with self._lock:
            return dict(self._entries)

    def __contains__(self, path: str) -> bool:
        with self._lock:
            return path in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __iter__(self) -> Iterator[str]:
        return iter(sorted(self.paths()))


@dataclass
class ScanResult:
    """Outcome of one scan of the local root."""
    entries: List[LocalEntry] = field(default_factory=list)
    unsettled: Set[str] = field(default_factory=set)
    vanished: Set[str] = field(default_factory=set)
    unreadable: Set[str] = field(default_factory=set)


@dataclass
class ChangeSet:
    """Paths partitioned by what the current cycle must do with them."""
    new: List[LocalEntry] = field(default_factory=list)
    modified: List[LocalEntry] = field(default_factory=list)
    unchanged: List[LocalEntry] = field(default_factory=list)
    deleted: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)

    @property
    def to_upload(self) -> List[LocalEntry]:
        return self.new + self.modified


@dataclass
class FailedPath:
    """A path that could not be synced in a cycle."""
    path: str
    kind: str
    message: str


@dataclass
class SyncCycleReport:
    """Per-cycle outcome, logged and then discarded."""
    cycle: int
    started_at: datetime
    duration: float = 0.0
    uploaded: int = 0
    skipped: int = 0
    deleted: int = 0
    abandoned: int = 0
    unsettled: int = 0
    failures: List[FailedPath] = field(default_factory=list)

    @property
    def failed(self) -> int:
        return len(self.failures)

    @property
    def unauthorized(self) -> List[FailedPath]:
        return [f for f in self.failures if f.kind == 'unauthorized']

    def record_failure(self, path: str, kind: str, message: str) -> None:
        self.failures.append(FailedPath(path=path, kind=kind, message=message))

    def to_dict(self) -> Dict[str, Any]:
        return {
            'cycle': self.cycle,
            'started_at': self.started_at.isoformat(),
            'duration': round(self.duration, 3),
            'uploaded': self.uploaded,
            'skipped': self.skipped,
            'deleted': self.deleted,
            'failed': self.failed,
            'abandoned': self.abandoned,
            'unsettled': self.unsettled,
            'failures': [
                {'path': f.path, 'kind': f.kind, 'message': f.message}
                for f in self.failures
            ]
        }


@dataclass
class BootstrapReport:
    """Outcome of the startup download phase."""
    started_at: datetime
    duration: float = 0.0
    remote_objects: int = 0
    downloaded: int = 0
    kept_local: int = 0
    skipped: int = 0
    seeded: int = 0
    total_bytes: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'started_at': self.started_at.isoformat(),
            'duration': round(self.duration, 3),
            'remote_objects': self.remote_objects,
            'downloaded': self.downloaded,
            'kept_local': self.kept_local,
            'skipped': self.skipped,
            'seeded': self.seeded,
            'total_bytes': self.total_bytes
        }
