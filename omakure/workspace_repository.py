import os
from pathlib import Path
from typing import List

from omakure.errors import WorkspaceIOError
from omakure.ports import EntryKind, ScriptEntry, ScriptRepository
from omakure.runtime import script_kind
from omakure.schema_parsing import read_schema_from_text
from omakure.schemas import Schema
from omakure.workspace import STATE_DIR_NAME

_SKIP_DIRS = {STATE_DIR_NAME, ".git", "__pycache__", "node_modules", ".venv", "venv"}


def _hidden(path: Path) -> bool:
    return path.name.startswith(".") or path.name in _SKIP_DIRS


def is_script(path: Path) -> bool:
    return path.is_file() and script_kind(path) is not None


class FsWorkspaceRepository(ScriptRepository):
    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    def list_entries(self, directory: Path) -> List[ScriptEntry]:
        try:
            children = list(Path(directory).iterdir())
        except OSError as exc:
            raise WorkspaceIOError(f"Failed to list {directory}: {exc}") from exc
        dirs: List[ScriptEntry] = []
        scripts: List[ScriptEntry] = []
        for child in children:
            if _hidden(child):
                continue
            if child.is_dir():
                dirs.append(ScriptEntry(child, EntryKind.DIRECTORY))
            elif is_script(child):
                scripts.append(ScriptEntry(child, EntryKind.SCRIPT))
        dirs.sort(key=lambda e: e.path.name.lower())
        scripts.sort(key=lambda e: e.path.name.lower())
        return dirs + scripts

    def list_scripts_recursive(self) -> List[Path]:
        found: List[Path] = []
        if not self.root.is_dir():
            return found
        for base, dirnames, filenames in os.walk(self.root):
            dirnames[:] = sorted(d for d in dirnames if not d.startswith(".") and d not in _SKIP_DIRS)
            for name in sorted(filenames):
                p = Path(base) / name
                if not name.startswith(".") and script_kind(p) is not None:
                    found.append(p)
        return found

    def read_schema(self, script: Path) -> Schema:
        try:
            text = Path(script).read_text(encoding="utf-8", errors="replace")
        except OSError as exc:
            raise WorkspaceIOError(f"Failed to read {script}: {exc}") from exc
        return read_schema_from_text(text, Path(script))
