"""Change detection for the watched tree.

Each `scan()` produces the changes since the last successful scan, one
ChangeEvent per path no matter how often the path was touched in between.

Candidates come from `git status` when the root is a git work tree, otherwise
from walking the tree. A candidate counts as changed when its (mtime, size)
fingerprint differs from the previous snapshot. Paths pushed through
`notify()` (by the file-system notifier in `daemon/notifier.py`) are part of
the next batch even when their fingerprint looks unchanged.
"""
from __future__ import annotations

import logging
import os
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Literal, Optional, Set, Tuple

from ..kernel.git import GitError, changed_paths, git_root
from ..kernel.globs import matches_any, normalize_path
from ..util.time import utc_now_iso

logger = logging.getLogger("ambient.watcher")

Fingerprint = Tuple[int, int]
ChangeKind = Literal["modified", "deleted"]


class WatcherUnavailable(Exception):
    pass


@dataclass(frozen=True)
class ChangeEvent:
    path: str
    detected_at: str
    kind: ChangeKind = "modified"


class ChangeWatcher:
    def __init__(
        self,
        root: Path,
        *,
        file_extensions: Iterable[str] = (),
        exclude_patterns: Iterable[str] = (),
        use_git: Optional[bool] = None,
    ) -> None:
        self.root = root
        self.use_git = (git_root(root) is not None) if use_git is None else bool(use_git)
        self._extensions: Set[str] = set()
        self._excludes: List[str] = []
        self.configure(file_extensions=file_extensions, exclude_patterns=exclude_patterns)
        self._lock = threading.Lock()
        self._snapshot: Optional[Dict[str, Fingerprint]] = None
        self._skipped: Dict[str, Fingerprint] = {}
        self._reported_missing: Set[str] = set()
        self._notified: Set[str] = set()
        self.last_skipped: List[str] = []

    def configure(self, *, file_extensions: Iterable[str], exclude_patterns: Iterable[str]) -> None:
        self._extensions = {str(e).lower().lstrip(".") for e in file_extensions if str(e).strip()}
        self._excludes = [str(p) for p in exclude_patterns if str(p).strip()]

    def is_excluded(self, rel: str) -> bool:
        return matches_any(rel, self._excludes)

    def has_watched_extension(self, rel: str) -> bool:
        if not self._extensions:
            return True
        name = rel.rsplit("/", 1)[-1]
        if "." not in name:
            return False
        return name.rsplit(".", 1)[-1].lower() in self._extensions

    def notify(self, path: str) -> None:
        """Record a path reported by an external notifier (absolute or root-relative)."""
        p = Path(path)
        if p.is_absolute():
            try:
                p = p.relative_to(self.root)
            except ValueError:
                return
        rel = normalize_path(p.as_posix())
        if rel:
            with self._lock:
                self._notified.add(rel)

    def _fingerprint(self, rel: str) -> Optional[Fingerprint]:
        try:
            st = (self.root / rel).stat()
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.warning(f"cannot stat {rel}: {e}", extra={"path": rel})
            return None
        if not os.path.isfile(self.root / rel):
            return None
        return int(st.st_mtime_ns), int(st.st_size)

    def _walk(self) -> List[str]:
        out: List[str] = []
        errors: List[OSError] = []

        def _onerror(e: OSError) -> None:
            errors.append(e)

        for dirpath, dirnames, filenames in os.walk(self.root, onerror=_onerror):
            rel_dir = Path(dirpath).relative_to(self.root).as_posix()
            rel_dir = "" if rel_dir == "." else rel_dir
            kept = []
            for d in sorted(dirnames):
                rel = f"{rel_dir}/{d}" if rel_dir else d
                if d == ".git" or matches_any(rel + "/", self._excludes):
                    continue
                kept.append(d)
            dirnames[:] = kept
            for name in filenames:
                out.append(f"{rel_dir}/{name}" if rel_dir else name)
        # An unreadable root is fatal for this cycle; unreadable subdirectories are not.
        if errors and any(Path(getattr(e, "filename", "") or "") == self.root for e in errors):
            raise WatcherUnavailable(f"cannot read {self.root}: {errors[0]}")
        return out

    def _candidates(self) -> List[str]:
        if not self.root.is_dir():
            raise WatcherUnavailable(f"watched root {self.root} is not a readable directory")
        if self.use_git:
            try:
                return changed_paths(self.root)
            except GitError as e:
                raise WatcherUnavailable(str(e)) from e
        return self._walk()

    def scan(self) -> List[ChangeEvent]:
        candidates = [normalize_path(c) for c in self._candidates()]
        candidate_set = set(candidates)
        with self._lock:
            notified = set(self._notified)

        current: Dict[str, Fingerprint] = {}
        missing: Set[str] = set()
        skipped: Dict[str, Fingerprint] = {}
        for rel in candidates:
            if not self.has_watched_extension(rel):
                continue
            fp = self._fingerprint(rel)
            if self.is_excluded(rel):
                if fp is not None:
                    skipped[rel] = fp
                continue
            if fp is None:
                missing.add(rel)
            else:
                current[rel] = fp

        previous = self._snapshot
        baseline_only = previous is None and not self.use_git
        prev = previous or {}
        changes: Dict[str, ChangeKind] = {}
        reported_missing = set(self._reported_missing)

        if not baseline_only:
            for rel, fp in current.items():
                if prev.get(rel) != fp:
                    changes[rel] = "modified"
            for rel in prev:
                if rel not in current and not (self.root / rel).exists():
                    missing.add(rel)
            for rel in missing:
                if rel not in reported_missing:
                    changes[rel] = "deleted"
        reported_missing = (reported_missing | missing) - set(current)

        for rel in notified:
            if not self.has_watched_extension(rel) or self.is_excluded(rel):
                continue
            # Only paths the candidate source knows about; keeps git-ignored files out.
            if rel not in candidate_set and rel not in prev:
                continue
            fp = self._fingerprint(rel)
            if fp is None:
                changes[rel] = "deleted"
                reported_missing.add(rel)
            else:
                changes[rel] = "modified"
                current[rel] = fp
                reported_missing.discard(rel)

        # Commit state only after the whole cycle succeeded.
        self.last_skipped = (
            [] if baseline_only else sorted(p for p, fp in skipped.items() if self._skipped.get(p) != fp)
        )
        self._snapshot = current
        self._skipped = skipped
        self._reported_missing = reported_missing
        with self._lock:
            self._notified -= notified

        ts = utc_now_iso()
        events = [ChangeEvent(path=rel, detected_at=ts, kind=kind) for rel, kind in sorted(changes.items())]
        if events:
            logger.info(f"scan found {len(events)} changed path(s)")
        return events
