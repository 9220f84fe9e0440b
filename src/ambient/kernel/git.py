from __future__ import annotations

import subprocess
from pathlib import Path
from typing import List, Optional, Tuple


class GitError(RuntimeError):
    pass


def _run_git(args: list[str], *, cwd: Path, timeout: float = 30.0) -> Tuple[int, str, str]:
    try:
        p = subprocess.run(
            ["git", *args],
            cwd=str(cwd),
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            encoding="utf-8",
            errors="replace",
            check=False,
            timeout=timeout,
        )
        return int(p.returncode), (p.stdout or ""), (p.stderr or "").strip()
    except (OSError, subprocess.SubprocessError) as e:
        return 1, "", str(e)


def git_root(path: Path) -> Optional[Path]:
    code, out, _ = _run_git(["rev-parse", "--show-toplevel"], cwd=path)
    out = out.strip()
    if code != 0 or not out:
        return None
    try:
        return Path(out).resolve()
    except Exception:
        return None


def parse_porcelain_z(out: str) -> List[str]:
    """Paths from `git status --porcelain -z` (rename targets, not sources)."""
    paths: List[str] = []
    entries = out.split("\0")
    i = 0
    while i < len(entries):
        entry = entries[i]
        i += 1
        if len(entry) < 4:
            continue
        status, path = entry[:2], entry[3:]
        if "R" in status or "C" in status:
            i += 1  # the next entry is the original path
        if path and path not in paths:
            paths.append(path)
    return paths


def show_prefix(path: Path) -> str:
    """Path of `path` inside its work tree ("" at the top, else "sub/dir/")."""
    code, out, err = _run_git(["rev-parse", "--show-prefix"], cwd=path)
    if code != 0:
        raise GitError(f"git rev-parse failed: {err or f'exit {code}'}")
    return out.strip()


def changed_paths(root: Path) -> List[str]:
    """Dirty and untracked paths under `root`, relative to `root`."""
    code, out, err = _run_git(["status", "--porcelain", "-z", "--untracked-files=all", "--", "."], cwd=root)
    if code != 0:
        raise GitError(f"git status failed: {err or f'exit {code}'}")
    # Porcelain paths are relative to the top of the work tree.
    prefix = show_prefix(root)
    return [p[len(prefix):] for p in parse_porcelain_z(out) if p.startswith(prefix)]


def diff_head(repo_root: Path, rel_path: str) -> str:
    code, out, _ = _run_git(["diff", "HEAD", "--", rel_path], cwd=repo_root)
    return out if code == 0 else ""
