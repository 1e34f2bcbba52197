"""
Change detection between a local scan and the last-known-synced state.
"""
from pathlib import Path
from typing import Callable, Optional, Set
from loguru import logger

from ..models.data_models import ChangeSet, LocalEntry, ScanResult, SyncState
from .scanner import fingerprint_file


class ChangeDetector:
    """
    Classifies scanned paths as new, modified, unchanged or locally deleted.

    Size and mtime are compared first; the content fingerprint is only
    computed when they differ from the cached state entry.
    """

    def __init__(self, root: str, fingerprint: Optional[Callable[[Path], str]] = None):
        self.root = Path(root)
        self._fingerprint = fingerprint or fingerprint_file

    def detect(self, scan: ScanResult, state: SyncState) -> ChangeSet:
        """
        Compare a scan against the state.

        Args:
            scan: Result of LocalTreeScanner.scan()
            state: Last-known-synced state, read only here

        Returns:
            ChangeSet: New/modified entries carry their fingerprint
        """
        changes = ChangeSet()
        present = set(scan.unsettled) | set(scan.vanished)

        for entry in scan.entries:
            present.add(entry.path)
            known = state.get(entry.path)

            if known is not None and known.size == entry.size and known.mtime_ns == entry.mtime_ns:
                entry.fingerprint = known.fingerprint
                changes.unchanged.append(entry)
                continue

            if not self._compute_fingerprint(entry, changes):
                continue

            if known is None:
                changes.new.append(entry)
            elif entry.fingerprint == known.fingerprint:
                changes.unchanged.append(entry)
            else:
                changes.modified.append(entry)

        held = scan.vanished | scan.unreadable
        changes.deleted = sorted(
            p for p in state.paths() if p not in present and not self._is_held(p, held)
        )

        logger.debug(f"Detected changes - New: {len(changes.new)}, Modified: {len(changes.modified)}, "
                     f"Unchanged: {len(changes.unchanged)}, Deleted: {len(changes.deleted)}")
        return changes

    @staticmethod
    def _is_held(path: str, held: Set[str]) -> bool:
        """True if the path or one of its parent directories could not be scanned."""
        return any(path == p or path.startswith(p + '/') for p in held)

    def _compute_fingerprint(self, entry: LocalEntry, changes: ChangeSet) -> bool:
        try:
            entry.fingerprint = self._fingerprint(self.root / entry.path)
            return True
        except FileNotFoundError:
            logger.debug(f"File vanished before hashing: {entry.path}")
            changes.skipped.append(entry.path)
        except OSError as e:
            logger.warning(f"Cannot read {entry.path}: {e}")
            changes.failed[entry.path] = str(e)
        return False
