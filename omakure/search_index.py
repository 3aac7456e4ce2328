"""In-memory script index rebuilt on a background thread."""
import threading
from pathlib import Path
from typing import List, Optional

from omakure.errors import OmakureError
from omakure.log_utils import get_logger
from omakure.ports import (
    IndexState,
    ScriptRepository,
    ScriptSearch,
    SearchDetails,
    SearchResult,
    SearchStatus,
)
from omakure.workspace_repository import FsWorkspaceRepository

log = get_logger("search")


def _haystack(result: SearchResult) -> str:
    parts = [result.name, result.description or "", " ".join(result.tags), result.script_path.as_posix()]
    return " ".join(parts).lower()


def matches(result: SearchResult, terms: List[str]) -> bool:
    hay = _haystack(result)
    return all(term in hay for term in terms)


def _rank(result: SearchResult, terms: List[str]):
    name = result.name.lower()
    name_hits = sum(1 for term in terms if term in name)
    return (-name_hits, result.schema_error is not None, result.script_path.as_posix().lower())


class SearchIndex(ScriptSearch):
    def __init__(self, root: Path, repository: Optional[ScriptRepository] = None) -> None:
        self.root = Path(root)
        self.repository = repository or FsWorkspaceRepository(self.root)
        self._lock = threading.Lock()
        self._results: List[SearchResult] = []
        self._status = SearchStatus()
        self._thread: Optional[threading.Thread] = None

    def _set_status(self, status: SearchStatus) -> None:
        with self._lock:
            self._status = status

    def status(self) -> SearchStatus:
        with self._lock:
            return self._status

    def _entry_for(self, script: Path) -> SearchResult:
        rel = Path(script).relative_to(self.root) if Path(script).is_relative_to(self.root) else Path(script)
        try:
            schema = self.repository.read_schema(script)
        except OmakureError as exc:
            return SearchResult(script_path=rel, name=Path(script).stem, schema_error=str(exc))
        return SearchResult(
            script_path=rel,
            name=schema.name,
            description=schema.description,
            tags=list(schema.tags or []),
        )

    def rebuild(self) -> None:
        with self._lock:
            self._results = []
            self._status = SearchStatus(IndexState.INDEXING, 0)
        try:
            scripts = self.repository.list_scripts_recursive()
        except OmakureError as exc:
            log.warning("search index failed: %s", exc)
            self._set_status(SearchStatus(IndexState.ERROR, message=str(exc)))
            return
        for script in scripts:
            entry = self._entry_for(script)
            with self._lock:
                self._results.append(entry)
                self._status = SearchStatus(IndexState.INDEXING, len(self._results))
        with self._lock:
            count = len(self._results)
            self._status = SearchStatus(IndexState.READY, count)
        log.info("search index ready count=%s", count)

    def start_background_rebuild(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._thread = threading.Thread(target=self._rebuild_guarded, name="omakure-search", daemon=True)
        self._thread.start()

    def _rebuild_guarded(self) -> None:
        try:
            self.rebuild()
        except Exception as exc:
            log.exception("search index crashed")
            self._set_status(SearchStatus(IndexState.ERROR, message=str(exc)))

    def wait(self, timeout: Optional[float] = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)

    def query(self, text: str) -> List[SearchResult]:
        terms = [t for t in text.lower().split() if t]
        with self._lock:
            snapshot = list(self._results)
        if not terms:
            return sorted(snapshot, key=lambda r: r.script_path.as_posix().lower())
        hits = [r for r in snapshot if matches(r, terms)]
        hits.sort(key=lambda r: _rank(r, terms))
        return hits

    def load_details(self, script_path: Path) -> Optional[SearchDetails]:
        full = self.root / script_path
        try:
            schema = self.repository.read_schema(full)
        except OmakureError as exc:
            return SearchDetails(script_path=Path(script_path), error=str(exc))
        return SearchDetails(script_path=Path(script_path), schema=schema.with_sorted_fields())


class DisabledSearch(ScriptSearch):
    """Used when `search.enabled` is false in the config."""

    def status(self) -> SearchStatus:
        return SearchStatus(IndexState.ERROR, message="search disabled")

    def query(self, text: str) -> List[SearchResult]:
        return []

    def load_details(self, script_path: Path) -> Optional[SearchDetails]:
        return None
