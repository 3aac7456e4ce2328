import os
from pathlib import Path
from typing import Optional

STATE_DIR_NAME = ".omakure"
DEFAULT_SCRIPTS_DIR_NAME = "omakure-scripts"
SCRIPTS_DIR_ENV_VARS = ("OMAKURE_SCRIPTS_DIR", "OVERTURE_SCRIPTS_DIR", "CLOUD_MGMT_SCRIPTS_DIR")


class Workspace:
    """Script tree plus the auxiliary directories stored beside it."""

    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    @property
    def state_dir(self) -> Path:
        return self.root / STATE_DIR_NAME

    @property
    def history_dir(self) -> Path:
        return self.state_dir / "history"

    @property
    def log_path(self) -> Path:
        return self.state_dir / "logs" / "omakure.log"

    @property
    def envs_dir(self) -> Path:
        return self.root / "envs"

    @property
    def envs_active_path(self) -> Path:
        return self.envs_dir / "active"

    @property
    def omaken_dir(self) -> Path:
        return self.root / "omaken"

    @property
    def config_path(self) -> Path:
        return self.root / "omakure.yaml"

    def ensure_layout(self) -> None:
        for p in (self.root, self.history_dir, self.log_path.parent, self.envs_dir, self.omaken_dir):
            p.mkdir(parents=True, exist_ok=True)

    def relative(self, path: Path) -> Path:
        try:
            return Path(path).relative_to(self.root)
        except ValueError:
            return Path(path)

    def display_path(self, path: Path) -> str:
        return self.relative(path).as_posix()


def _documents_dir(name: str) -> Path:
    home = os.environ.get("USERPROFILE") if os.name == "nt" else os.environ.get("HOME")
    if home:
        return Path(home) / "Documents" / name
    return Path("scripts")


def resolve_scripts_dir(override: Optional[str] = None) -> Path:
    if override:
        return Path(override).expanduser()
    for var in SCRIPTS_DIR_ENV_VARS:
        value = os.environ.get(var, "").strip()
        if value:
            return Path(value).expanduser()
    default_dir = _documents_dir(DEFAULT_SCRIPTS_DIR_NAME)
    if default_dir.is_dir():
        return default_dir
    for legacy in ("overture-scripts", "cloud-mgmt-scripts"):
        candidate = _documents_dir(legacy)
        if candidate.is_dir():
            return candidate
    return default_dir
