from pathlib import Path
from typing import Dict, List, Optional

import pytest

from omakure.controller import WorkflowController
from omakure.environments import parse_env_defaults, parse_env_preview
from omakure.errors import BlockNotFound, EnvironmentNotFound, WorkspaceIOError
from omakure.history import HistoryStore
from omakure.ports import (
    EntryKind,
    EnvFile,
    EnvironmentConfig,
    EnvironmentRepository,
    IndexState,
    ScriptEntry,
    ScriptRepository,
    ScriptRunner,
    ScriptRunOutput,
    ScriptSearch,
    SearchDetails,
    SearchResult,
    SearchStatus,
)
from omakure.schemas import Field, Schema
from omakure.workspace import Workspace

ROOT = Path("/ws")


def make_schema(name: str = "Deploy", fields: Optional[List[Field]] = None, **kwargs) -> Schema:
    return Schema(name=name, fields=fields or [], **kwargs)


def make_field(name: str, order: int = 0, kind: str = "string", **kwargs) -> Field:
    return Field(name=name, kind=kind, order=order, **kwargs)


class FakeRepository(ScriptRepository):
    def __init__(self, tree=None, schemas=None, failing_dirs=None):
        self.tree: Dict[Path, List[ScriptEntry]] = tree or {}
        self.schemas: Dict[Path, object] = schemas or {}
        self.failing_dirs = set(failing_dirs or [])
        self.schema_reads: List[Path] = []

    def list_entries(self, directory):
        if directory in self.failing_dirs:
            raise WorkspaceIOError(f"Failed to list {directory}: permission denied")
        return list(self.tree.get(directory, []))

    def list_scripts_recursive(self):
        return [e.path for entries in self.tree.values() for e in entries if not e.is_dir]

    def read_schema(self, script):
        self.schema_reads.append(script)
        value = self.schemas.get(script)
        if value is None:
            raise BlockNotFound()
        if isinstance(value, Exception):
            raise value
        return value


class FakeRunner(ScriptRunner):
    def __init__(self, output: Optional[ScriptRunOutput] = None, error: Optional[Exception] = None):
        self.output = output or ScriptRunOutput(stdout="done\n", stderr="", exit_code=0, success=True)
        self.error = error
        self.calls = []

    def run(self, script, args):
        self.calls.append((script, list(args)))
        if self.error is not None:
            raise self.error
        return self.output


class FakeEnvironments(EnvironmentRepository):
    def __init__(self, files: Optional[Dict[str, str]] = None, active: Optional[str] = None):
        self.envs_dir = ROOT / "envs"
        self.files = dict(files or {})
        self.active = active

    def list_env_files(self):
        return [EnvFile(name=n) for n in sorted(self.files)]

    def load_environment_config(self):
        defaults = {}
        if self.active:
            if self.active not in self.files:
                raise EnvironmentNotFound(self.active)
            defaults = parse_env_defaults(self.files[self.active])
        return EnvironmentConfig(envs_dir=self.envs_dir, active=self.active, defaults=defaults)

    def set_active_env(self, name):
        if name is not None and name not in self.files:
            raise EnvironmentNotFound(name)
        self.active = name

    def load_env_preview(self, path):
        return parse_env_preview(self.files[Path(path).name])

    def load_env_defaults(self, path):
        return parse_env_defaults(self.files[Path(path).name])


class FakeSearch(ScriptSearch):
    def __init__(self, results: Optional[List[SearchResult]] = None, status: Optional[SearchStatus] = None):
        self.results = results or []
        self.current = status or SearchStatus(IndexState.READY, len(self.results))
        self.queries: List[str] = []

    def status(self):
        return self.current

    def query(self, text):
        self.queries.append(text)
        terms = text.lower().split()
        return [r for r in self.results if all(t in r.name.lower() for t in terms)]

    def load_details(self, script_path):
        return SearchDetails(script_path=script_path)


def script(path: Path) -> ScriptEntry:
    return ScriptEntry(path, EntryKind.SCRIPT)


def directory(path: Path) -> ScriptEntry:
    return ScriptEntry(path, EntryKind.DIRECTORY)


@pytest.fixture
def build_controller(tmp_path):
    """Factory for a controller wired to in-memory collaborators."""

    def _build(repository=None, runner=None, environments=None, search=None, history=None, store=True, widget_fn=None):
        return WorkflowController(
            workspace=Workspace(ROOT),
            repository=repository or FakeRepository(),
            runner=runner or FakeRunner(),
            environments=environments or FakeEnvironments(),
            search=search or FakeSearch(),
            history_store=HistoryStore(tmp_path / "history") if store else None,
            history=history,
            widget_fn=widget_fn or (lambda d: None),
        )

    return _build
