"""Settings management for the ambient watcher.

Two YAML documents are merged into one immutable snapshot:
- global:  $AMBIENT_HOME/settings.yaml (default ~/.ambient/settings.yaml)
- project: <root>/.ambient/config.yaml

Project keys override global keys. `ollama` is merged key by key and
`reviews` by rule name (a project rule replaces the global rule of the same
name; new names are appended in declaration order).
"""
from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml  # type: ignore
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..contracts.v1 import Rule
from ..paths import global_settings_path, project_config_dir, project_config_path
from ..util.fs import atomic_write_text, mtime_ns
from .rules import RuleSet


class SettingsError(ValueError):
    pass


DEFAULT_FILE_EXTENSIONS: List[str] = [
    "rs", "toml", "js", "ts", "jsx", "tsx", "py", "go", "java", "cpp", "c", "h", "hpp",
    "cs", "rb", "php", "swift", "kt", "scala", "sh", "bash", "zsh", "fish", "yml", "yaml",
    "json", "xml", "html", "css", "scss", "sass", "less", "sql", "md", "mdx",
]

DEFAULT_EXCLUDE_PATTERNS: List[str] = [
    "target/**",
    "node_modules/**",
    ".git/**",
    "*.min.js",
    ".ambient/**",
]

DEFAULT_REVIEWS: List[Rule] = [
    Rule(
        name="Syntax & Type Errors",
        description="Detect syntax errors and type mismatches",
        file_patterns=["*.rs", "*.ts", "*.js", "*.py"],
        prompt=(
            "Analyze the following code and report possible syntax or type errors:\n"
            "1. Undefined variables, unbalanced brackets, missing semicolons\n"
            "2. Type mismatches\n"
            "3. Point at each problem as `{file_path}:<line>`\n"
            "If there are none, answer 'No syntax errors found.'"
        ),
        priority=200,
    ),
    Rule(
        name="Security Risks",
        description="Detect vulnerabilities and hard-coded secrets",
        file_patterns=["*"],
        prompt=(
            "Report the security risks in `{file_path}`:\n"
            "1. Hard-coded API keys, passwords or tokens\n"
            "2. SQL injection or XSS vulnerabilities\n"
            "3. Unsafe input validation\n"
            "If there are none, answer 'No security risks found.'"
        ),
        priority=150,
    ),
    Rule(
        name="Performance",
        description="Detect performance problems and optimization opportunities",
        file_patterns=["*.rs", "*.go", "*.cpp"],
        prompt=(
            "Analyze the performance of `{file_path}`:\n"
            "1. Quadratic or worse complexity\n"
            "2. Needless loops or leaks\n"
            "3. More efficient alternatives"
        ),
        priority=100,
    ),
]


class OllamaSettings(BaseModel):
    base_url: str = "http://localhost:11434/v1"
    model: str = "gpt-oss:20b"
    timeout_secs: float = Field(default=300.0, gt=0)
    stream: bool = True

    model_config = ConfigDict(extra="forbid", frozen=True)


class AmbientSettings(BaseModel):
    enabled: bool = True
    check_interval_secs: int = Field(default=60, ge=1)
    notify_events: bool = True
    host: str = "127.0.0.1"
    port: int = Field(default=38080, ge=1, le=65535)
    port_attempts: int = Field(default=10, ge=1)
    file_extensions: List[str] = Field(default_factory=lambda: list(DEFAULT_FILE_EXTENSIONS))
    exclude_patterns: List[str] = Field(default_factory=lambda: list(DEFAULT_EXCLUDE_PATTERNS))
    queue_max_depth: int = Field(default=100, ge=1)
    echo_queries: bool = False
    ollama: OllamaSettings = Field(default_factory=OllamaSettings)
    reviews: List[Rule] = Field(default_factory=lambda: list(DEFAULT_REVIEWS))

    model_config = ConfigDict(extra="forbid", frozen=True)

    def ruleset(self) -> RuleSet:
        return RuleSet.from_rules(self.reviews)


def _load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    try:
        doc = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except (OSError, yaml.YAMLError) as e:
        raise SettingsError(f"cannot read {path}: {e}") from e
    if not isinstance(doc, dict):
        raise SettingsError(f"{path}: top level must be a mapping")
    return doc


def _merge_reviews(base: List[Any], override: List[Any]) -> List[Any]:
    out = list(base)
    index = {str(r.get("name")): i for i, r in enumerate(out) if isinstance(r, dict)}
    for r in override:
        name = str(r.get("name")) if isinstance(r, dict) else None
        if name is not None and name in index:
            out[index[name]] = r
        else:
            out.append(r)
    return out


def merge_docs(global_doc: Dict[str, Any], project_doc: Dict[str, Any]) -> Dict[str, Any]:
    merged = dict(global_doc)
    for key, value in project_doc.items():
        if key == "ollama" and isinstance(value, dict) and isinstance(merged.get("ollama"), dict):
            merged["ollama"] = {**merged["ollama"], **value}
        elif key == "reviews" and isinstance(value, list) and isinstance(merged.get("reviews"), list):
            merged["reviews"] = _merge_reviews(merged["reviews"], value)
        else:
            merged[key] = value
    return merged


def parse_settings(doc: Dict[str, Any]) -> AmbientSettings:
    try:
        return AmbientSettings.model_validate(doc)
    except ValidationError as e:
        raise SettingsError(f"invalid settings: {e}") from e


def load_settings(root: Path, *, global_path: Optional[Path] = None) -> AmbientSettings:
    gdoc = _load_yaml(global_path or global_settings_path())
    pdoc = _load_yaml(project_config_path(root))
    return parse_settings(merge_docs(gdoc, pdoc))


class SettingsStore:
    """Holds the current settings snapshot for one watched root.

    `snapshot()` reloads when either file changed on disk; a broken file keeps
    the previous snapshot and records the error in `last_error`.
    """

    def __init__(self, root: Path, *, global_path: Optional[Path] = None) -> None:
        self.root = root
        self._global_path = global_path or global_settings_path()
        self._stamp: Tuple[Optional[int], Optional[int]] = (None, None)
        self._current: Optional[AmbientSettings] = None
        self.last_error: str = ""

    def _file_stamp(self) -> Tuple[Optional[int], Optional[int]]:
        return mtime_ns(self._global_path), mtime_ns(project_config_path(self.root))

    def reload(self) -> AmbientSettings:
        stamp = self._file_stamp()
        try:
            settings = load_settings(self.root, global_path=self._global_path)
        except SettingsError as e:
            self.last_error = str(e)
            self._stamp = stamp
            if self._current is None:
                self._current = AmbientSettings()
            return self._current
        self.last_error = ""
        self._stamp = stamp
        self._current = settings
        return settings

    def snapshot(self) -> AmbientSettings:
        if self._current is None or self._file_stamp() != self._stamp:
            return self.reload()
        return self._current


_SAMPLE_README = """# Ambient Watcher project settings

`config.yaml` in this directory overrides the global settings in
`~/.ambient/settings.yaml` for this project.

## Reviews

```yaml
reviews:
  - name: Project conventions
    description: Project specific review
    file_patterns: ["src/**/*.py"]
    exclude_patterns: ["src/generated/**"]
    prompt: Review `{file_path}` against the project conventions.
    priority: 300
    enabled: true
```

Higher priorities run first. `{file_path}` is replaced by the changed path;
put `{content}` where the file content (or its diff against HEAD) belongs,
otherwise it is appended after the prompt.

## Excludes

Patterns use .gitignore syntax: `*.rs` matches at any depth, `dir/` covers
everything below `dir`.

```yaml
exclude_patterns:
  - "target/**"
  - "tests/**"
  - "*.generated.rs"
```
"""


def create_sample(root: Path) -> Path:
    """Write `.ambient/config.yaml` (defaults) and a README; returns the config path."""
    path = project_config_path(root)
    doc = AmbientSettings().model_dump(mode="json")
    atomic_write_text(path, yaml.safe_dump(doc, allow_unicode=True, sort_keys=False))
    atomic_write_text(project_config_dir(root) / "README.md", _SAMPLE_README)
    return path
