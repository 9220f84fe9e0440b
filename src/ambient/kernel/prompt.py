from __future__ import annotations

from pathlib import Path
from typing import Callable

from ..contracts.v1 import CONTENT_TOKEN, FILE_PATH_TOKEN, Rule
from .git import diff_head

CONTENT_SEPARATOR = "\n\n---\n\n"
DEFAULT_MAX_CHARS = 200_000

FileReader = Callable[[str], str]


class ContentUnavailable(Exception):
    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"{path}: {reason}")
        self.path = path
        self.reason = reason


class WorkingTreeReader:
    """Reads what a review should look at for a changed path.

    In a git work tree the diff against HEAD is preferred; files without a
    diff (untracked, or outside git) are read whole.
    """

    def __init__(self, root: Path, *, use_git: bool = True, max_chars: int = DEFAULT_MAX_CHARS) -> None:
        self.root = root
        self.use_git = use_git
        self.max_chars = max_chars

    def __call__(self, rel_path: str) -> str:
        if self.use_git:
            diff = diff_head(self.root, rel_path)
            if diff.strip():
                return self._clip(diff)
        full = self.root / rel_path
        try:
            text = full.read_text(encoding="utf-8")
        except FileNotFoundError as e:
            raise ContentUnavailable(rel_path, "file no longer exists") from e
        except PermissionError as e:
            raise ContentUnavailable(rel_path, "permission denied") from e
        except UnicodeDecodeError as e:
            raise ContentUnavailable(rel_path, "not a UTF-8 text file") from e
        except OSError as e:
            raise ContentUnavailable(rel_path, str(e)) from e
        return self._clip(text)

    def _clip(self, text: str) -> str:
        if self.max_chars > 0 and len(text) > self.max_chars:
            return text[: self.max_chars] + f"\n... (truncated, {len(text) - self.max_chars} more characters)"
        return text


def render_template(template: str, file_path: str, content: str) -> str:
    # Substitute content last so a literal token inside the file is left alone.
    head, sep, tail = template.partition(CONTENT_TOKEN)
    head = head.replace(FILE_PATH_TOKEN, file_path)
    if not sep:
        return head + CONTENT_SEPARATOR + content
    return head + content + tail.replace(FILE_PATH_TOKEN, file_path).replace(CONTENT_TOKEN, "")


def build_prompt(rule: Rule, file_path: str, reader: FileReader) -> str:
    try:
        content = reader(file_path)
    except ContentUnavailable:
        raise
    except OSError as e:
        raise ContentUnavailable(file_path, str(e)) from e
    return render_template(rule.prompt, file_path, content)
