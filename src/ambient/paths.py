from __future__ import annotations

import os
from pathlib import Path


PROJECT_DIR_NAME = ".ambient"


def ambient_home() -> Path:
    env = os.environ.get("AMBIENT_HOME", "").strip()
    if env:
        return Path(env).expanduser().resolve()
    return (Path.home() / ".ambient").resolve()


def global_settings_path() -> Path:
    return ambient_home() / "settings.yaml"


def project_config_dir(root: Path) -> Path:
    return root / PROJECT_DIR_NAME


def project_config_path(root: Path) -> Path:
    return project_config_dir(root) / "config.yaml"
