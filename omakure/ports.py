"""Collaborator interfaces the controller talks to, with their value types."""
import abc
import enum
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from omakure.schemas import Schema


class EntryKind(enum.Enum):
    DIRECTORY = "dir"
    SCRIPT = "script"


@dataclass(frozen=True)
class ScriptEntry:
    path: Path
    kind: EntryKind

    @property
    def is_dir(self) -> bool:
        return self.kind is EntryKind.DIRECTORY


@dataclass
class ScriptRunOutput:
    stdout: str
    stderr: str
    exit_code: Optional[int]
    success: bool


@dataclass(frozen=True)
class EnvFile:
    name: str


@dataclass
class EnvironmentConfig:
    envs_dir: Path
    active: Optional[str] = None
    defaults: Dict[str, str] = field(default_factory=dict)


EnvPreview = List[Tuple[str, str]]


class ScriptRepository(abc.ABC):
    @abc.abstractmethod
    def list_entries(self, directory: Path) -> List[ScriptEntry]:
        """Immediate children: directories and runnable scripts. Raises WorkspaceIOError."""

    @abc.abstractmethod
    def list_scripts_recursive(self) -> List[Path]:
        ...

    @abc.abstractmethod
    def read_schema(self, script: Path) -> Schema:
        """Raises SchemaError or WorkspaceIOError."""


class ScriptRunner(abc.ABC):
    @abc.abstractmethod
    def run(self, script: Path, args: List[str]) -> ScriptRunOutput:
        """Blocks until the child exits. Raises ExecutionError."""


class EnvironmentRepository(abc.ABC):
    @abc.abstractmethod
    def list_env_files(self) -> List[EnvFile]:
        ...

    @abc.abstractmethod
    def load_environment_config(self) -> EnvironmentConfig:
        ...

    @abc.abstractmethod
    def set_active_env(self, name: Optional[str]) -> None:
        ...

    @abc.abstractmethod
    def load_env_preview(self, path: Path) -> EnvPreview:
        ...

    @abc.abstractmethod
    def load_env_defaults(self, path: Path) -> Dict[str, str]:
        ...


class IndexState(enum.Enum):
    IDLE = "idle"
    INDEXING = "indexing"
    READY = "ready"
    ERROR = "error"


@dataclass(frozen=True)
class SearchStatus:
    state: IndexState = IndexState.IDLE
    count: int = 0
    message: str = ""

    def label(self) -> str:
        if self.state is IndexState.READY:
            return f"ready ({self.count})"
        if self.state is IndexState.INDEXING:
            return f"indexing ({self.count})"
        if self.state is IndexState.ERROR:
            return f"error: {self.message}"
        return "idle"


@dataclass
class SearchResult:
    script_path: Path
    name: str
    description: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    schema_error: Optional[str] = None


@dataclass
class SearchDetails:
    script_path: Path
    schema: Optional[Schema] = None
    error: Optional[str] = None


class ScriptSearch(abc.ABC):
    """Background-maintained index; every call returns immediately."""

    @abc.abstractmethod
    def status(self) -> SearchStatus:
        ...

    @abc.abstractmethod
    def query(self, text: str) -> List[SearchResult]:
        ...

    @abc.abstractmethod
    def load_details(self, script_path: Path) -> Optional[SearchDetails]:
        ...
