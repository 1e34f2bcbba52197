"""
Pytest configuration and fixtures for the media sync tests.
"""
import hashlib
import os
import threading
import time
from datetime import datetime, timezone
from io import BytesIO

import pytest

from media_sync.errors import NotFound
from media_sync.models.config import S3Config, SyncConfig
from media_sync.models.data_models import RemoteEntry, SyncState
from media_sync.services.change_detector import ChangeDetector
from media_sync.services.retry import RetryController
from media_sync.services.scanner import LocalTreeScanner
from media_sync.services.sync_engine import SyncLoopEngine

# Files written by tests are this old unless a test says otherwise
SETTLED_AGE = 3600


def md5(data: bytes) -> str:
    return hashlib.md5(data).hexdigest()


class FakeS3Manager:
    """In-memory stand-in for S3Manager with call recording and failure injection."""

    def __init__(self):
        self.objects = {}
        self.put_calls = []
        self.get_calls = []
        self.delete_calls = []
        self.list_calls = 0
        self.on_put = None
        self.on_get = None
        self._failures = {}
        self._lock = threading.Lock()

    def add_object(self, key, data: bytes):
        self.objects[key] = (data, datetime(2024, 1, 1, tzinfo=timezone.utc))

    def fail(self, operation, key, error, times=None):
        """Make ``operation`` on ``key`` raise ``error`` (``times`` calls, or always)."""
        self._failures[(operation, key)] = [error, times]

    def clear_failures(self):
        self._failures.clear()

    def _maybe_fail(self, operation, key):
        with self._lock:
            failure = self._failures.get((operation, key))
            if failure is None:
                return
            error, times = failure
            if times is not None:
                if times <= 0:
                    return
                failure[1] = times - 1
        raise error

    def list_objects(self, prefix=None):
        self.list_calls += 1
        self._maybe_fail('list', None)
        for key, (data, last_modified) in sorted(self.objects.items()):
            if prefix and not key.startswith(prefix):
                continue
            yield RemoteEntry(key=key, size=len(data), last_modified=last_modified, fingerprint=md5(data))

    def get_object_stream(self, key):
        with self._lock:
            self.get_calls.append(key)
        if self.on_get:
            self.on_get(key)
        self._maybe_fail('get', key)
        if key not in self.objects:
            raise NotFound(f"get {key}: NoSuchKey")
        return BytesIO(self.objects[key][0])

    def put_object(self, key, stream, size):
        with self._lock:
            self.put_calls.append(key)
        if self.on_put:
            self.on_put(key)
        self._maybe_fail('put', key)
        data = stream.read()
        last_modified = datetime.now(timezone.utc)
        with self._lock:
            self.objects[key] = (data, last_modified)
        return RemoteEntry(key=key, size=len(data), last_modified=last_modified, fingerprint=md5(data))

    def delete_object(self, key):
        with self._lock:
            self.delete_calls.append(key)
        self._maybe_fail('delete', key)
        self.objects.pop(key, None)

    def test_connection(self):
        return True


class FakeClock:
    """Deterministic clock: waiting advances monotonic time instead of sleeping."""

    def __init__(self, wall=None, start=0.0):
        self.wall = wall
        self.now = start
        self.waits = []

    def time(self):
        return self.wall if self.wall is not None else time.time()

    def monotonic(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds

    def wait(self, event, timeout):
        self.waits.append(timeout)
        self.now += timeout
        return event.is_set()


@pytest.fixture
def fake_s3():
    """Pytest fixture for the in-memory bucket."""
    return FakeS3Manager()


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def media_root(tmp_path):
    """Empty local media directory."""
    root = tmp_path / "media"
    root.mkdir()
    return root


@pytest.fixture
def write_file(media_root):
    """Write a file under the media root with a settled mtime by default."""
    def _write(rel_path, data: bytes, age=SETTLED_AGE):
        path = media_root / rel_path
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        if age is not None:
            mtime = time.time() - age
            os.utime(path, (mtime, mtime))
        return path
    return _write


@pytest.fixture
def no_sleep_retry():
    return RetryController(max_attempts=3, backoff_base=0, backoff_cap=0, sleep=lambda seconds: None)


@pytest.fixture
def make_engine(media_root, fake_s3, no_sleep_retry):
    """Build a SyncLoopEngine over the media root and the fake bucket."""
    def _make(state=None, settle_window=5, **kwargs):
        state = state if state is not None else SyncState()
        scanner = LocalTreeScanner(str(media_root), settle_window=settle_window)
        detector = ChangeDetector(str(media_root))
        return SyncLoopEngine(str(media_root), fake_s3, scanner, detector, no_sleep_retry, state, **kwargs)
    return _make


@pytest.fixture
def sync_config(media_root, tmp_path):
    """Create a test sync configuration."""
    return SyncConfig(
        media_s3=S3Config(
            bucket="media-bucket",
            region="us-east-1",
            prefix="uploads/",
            access_key="test_key",
            secret_key="test_secret"
        ),
        local_root=str(media_root),
        sync_interval=30,
        settle_window=0,
        retry_max_attempts=2,
        retry_backoff_base=0,
        retry_backoff_cap=0,
        readiness_file=str(tmp_path / "ready")
    )


@pytest.fixture
def clean_env(monkeypatch):
    """Remove every variable the sidecar reads from the environment."""
    names = [
        'MEDIA_S3_BUCKET', 'MEDIA_S3_REGION', 'MEDIA_S3_PREFIX', 'MEDIA_S3_ENDPOINT',
        'MEDIA_S3_ACCESS_KEY', 'MEDIA_S3_SECRET_KEY', 'LOCAL_ROOT', 'SYNC_INTERVAL',
        'PROPAGATE_DELETES', 'SETTLE_WINDOW', 'UPLOAD_CONCURRENCY', 'RETRY_MAX_ATTEMPTS',
        'RETRY_BACKOFF_BASE', 'RETRY_BACKOFF_CAP', 'REMOTE_CALL_TIMEOUT',
        'SHUTDOWN_GRACE_PERIOD', 'BOOTSTRAP_TIMEOUT', 'READINESS_FILE', 'EXCLUDE_PATTERNS'
    ]
    for name in names:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch
