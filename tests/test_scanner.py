"""
Tests for LocalTreeScanner and fingerprint_file.
"""
import hashlib
import os
from pathlib import Path

import pytest

from media_sync.errors import LocalIOError
from media_sync.services.scanner import LocalTreeScanner, fingerprint_file


class TestLocalTreeScanner:
    """Test cases for LocalTreeScanner."""

    def test_lists_nested_files_with_posix_paths(self, media_root, write_file):
        write_file('a.jpg', b'aaa')
        write_file('2024/05/b.png', b'bb')

        result = LocalTreeScanner(str(media_root)).scan()

        entries = {e.path: e for e in result.entries}
        assert set(entries) == {'a.jpg', '2024/05/b.png'}
        assert entries['a.jpg'].size == 3
        assert entries['a.jpg'].fingerprint is None
        assert not result.unsettled

    def test_settle_window_excludes_recent_files(self, media_root, write_file, fake_clock):
        """Test files modified inside the settle window are held back."""
        old = write_file('old.jpg', b'old', age=None)
        fresh = write_file('fresh.jpg', b'fresh', age=None)
        os.utime(old, (1000, 1000))
        os.utime(fresh, (1998, 1998))
        fake_clock.wall = 2000

        result = LocalTreeScanner(str(media_root), settle_window=5, clock=fake_clock).scan()

        assert [e.path for e in result.entries] == ['old.jpg']
        assert result.unsettled == {'fresh.jpg'}

    def test_symlinks_are_skipped(self, media_root, write_file, tmp_path):
        target = write_file('real.jpg', b'data')
        os.symlink(target, media_root / 'link.jpg')
        outside = tmp_path / 'outside'
        outside.mkdir()
        os.symlink(outside, media_root / 'linked-dir')

        result = LocalTreeScanner(str(media_root)).scan()

        assert [e.path for e in result.entries] == ['real.jpg']

    def test_bookkeeping_and_excluded_patterns_are_skipped(self, media_root, write_file):
        write_file('keep.jpg', b'1')
        write_file('.media-sync-abc.part', b'2')
        write_file('sub/.media-sync-def.part', b'3')
        write_file('upload.tmp', b'4')
        write_file('cache/thumb.jpg', b'5')

        scanner = LocalTreeScanner(str(media_root), exclude_patterns=['*.tmp', 'cache/*'])
        result = scanner.scan()

        assert [e.path for e in result.entries] == ['keep.jpg']

    def test_missing_root_raises(self, tmp_path):
        with pytest.raises(LocalIOError):
            LocalTreeScanner(str(tmp_path / 'nope')).scan()

    def test_file_vanishing_mid_scan_is_not_an_error(self, media_root, write_file, monkeypatch):
        """Test a file deleted between listing and stat is reported as vanished."""
        write_file('stays.jpg', b'1')
        doomed = write_file('doomed.jpg', b'2')
        real_scandir = os.scandir

        class _Snapshot:
            def __init__(self, path):
                self._entries = list(real_scandir(path))

            def __enter__(self):
                # remove the file after the directory has been listed
                if doomed.exists():
                    doomed.unlink()
                return iter(self._entries)

            def __exit__(self, *exc):
                return False

        monkeypatch.setattr('media_sync.services.scanner.os.scandir', _Snapshot)

        result = LocalTreeScanner(str(media_root)).scan()

        assert [e.path for e in result.entries] == ['stays.jpg']
        assert result.vanished == {'doomed.jpg'}

    def test_unreadable_directory_is_reported(self, media_root, write_file, monkeypatch):
        """Test a directory that cannot be listed is reported instead of silently dropped."""
        write_file('top.jpg', b'1')
        write_file('album/a.jpg', b'2')
        blocked = media_root / 'album'
        real_scandir = os.scandir

        def _scandir(path):
            if Path(path) == blocked:
                raise PermissionError(13, 'Permission denied', str(path))
            return real_scandir(path)

        monkeypatch.setattr('media_sync.services.scanner.os.scandir', _scandir)

        result = LocalTreeScanner(str(media_root)).scan()

        assert [e.path for e in result.entries] == ['top.jpg']
        assert result.unreadable == {'album'}
        assert not result.vanished


def test_fingerprint_file_matches_md5(media_root, write_file):
    data = os.urandom(200_000)
    path = write_file('blob.bin', data)

    assert fingerprint_file(path) == hashlib.md5(data).hexdigest()
