from pathlib import Path
from typing import Dict, Iterator, List, Optional, Tuple

from omakure.errors import EnvironmentConfigError, EnvironmentNotFound
from omakure.ports import EnvFile, EnvironmentConfig, EnvironmentRepository, EnvPreview

ACTIVE_FILE = "active"
_SENSITIVE_TOKENS = ("password", "secret", "token", "key", "api", "private", "cred")
MASK = "***"


def _is_comment(line: str) -> bool:
    return not line or line.startswith("#") or line.startswith(";")


def strip_quotes(value: str) -> str:
    trimmed = value.strip()
    if len(trimmed) >= 2 and trimmed[0] == trimmed[-1] and trimmed[0] in ("'", '"'):
        return trimmed[1:-1]
    return trimmed


def is_sensitive_key(key: str) -> bool:
    lower = key.lower()
    return any(token in lower for token in _SENSITIVE_TOKENS)


def _iter_pairs(contents: str) -> Iterator[Tuple[str, str]]:
    for line in contents.splitlines():
        trimmed = line.strip()
        if _is_comment(trimmed):
            continue
        if trimmed.startswith("export "):
            trimmed = trimmed[len("export "):].strip()
        key, _, raw_value = trimmed.partition("=")
        key = key.strip()
        if not key:
            continue
        yield key, strip_quotes(raw_value).strip()


def parse_env_preview(contents: str) -> EnvPreview:
    entries: EnvPreview = []
    for key, value in _iter_pairs(contents):
        if value and is_sensitive_key(key):
            value = MASK
        entries.append((key, value))
    return entries


def parse_env_defaults(contents: str) -> Dict[str, str]:
    return {key.lower(): value for key, value in _iter_pairs(contents) if value}


class FsEnvironmentRepository(EnvironmentRepository):
    def __init__(self, envs_dir: Path) -> None:
        self.envs_dir = Path(envs_dir)

    def _read(self, path: Path) -> str:
        try:
            return path.read_text(encoding="utf-8")
        except OSError as exc:
            raise EnvironmentConfigError(f"Failed to read environment file {path}: {exc}") from exc

    def list_env_files(self) -> List[EnvFile]:
        if not self.envs_dir.exists():
            return []
        try:
            children = list(self.envs_dir.iterdir())
        except OSError as exc:
            raise EnvironmentConfigError(f"Failed to read environments dir {self.envs_dir}: {exc}") from exc
        names = sorted(p.name for p in children if p.is_file() and p.name != ACTIVE_FILE)
        return [EnvFile(name=n) for n in names]

    def _active_name(self) -> Optional[str]:
        active_path = self.envs_dir / ACTIVE_FILE
        if not active_path.exists():
            return None
        try:
            contents = active_path.read_text(encoding="utf-8")
        except OSError as exc:
            raise EnvironmentConfigError(f"Failed to read active environment {active_path}: {exc}") from exc
        for line in contents.splitlines():
            trimmed = line.strip()
            if not _is_comment(trimmed):
                return trimmed
        return None

    def load_environment_config(self) -> EnvironmentConfig:
        active = self._active_name()
        defaults: Dict[str, str] = {}
        if active:
            path = self.envs_dir / active
            if not path.is_file():
                raise EnvironmentNotFound(str(path))
            defaults = self.load_env_defaults(path)
        return EnvironmentConfig(envs_dir=self.envs_dir, active=active, defaults=defaults)

    def set_active_env(self, name: Optional[str]) -> None:
        active_path = self.envs_dir / ACTIVE_FILE
        try:
            self.envs_dir.mkdir(parents=True, exist_ok=True)
            if name is None:
                if active_path.exists():
                    active_path.unlink()
                return
        except OSError as exc:
            raise EnvironmentConfigError(f"Failed to update active environment {active_path}: {exc}") from exc
        candidate = self.envs_dir / name
        if not candidate.is_file():
            raise EnvironmentNotFound(str(candidate))
        try:
            active_path.write_text(f"{name}\n", encoding="utf-8")
        except OSError as exc:
            raise EnvironmentConfigError(f"Failed to write active environment {active_path}: {exc}") from exc

    def load_env_preview(self, path: Path) -> EnvPreview:
        return parse_env_preview(self._read(path))

    def load_env_defaults(self, path: Path) -> Dict[str, str]:
        return parse_env_defaults(self._read(path))
