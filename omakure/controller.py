"""
Interactive workflow state machine.

The controller owns every piece of session state and is driven by the shell
loop: key handlers call the transition methods below, `tick` polls background
work once per loop iteration, and `take_pending_run` / `execute_run` perform the
single blocking operation (running a script).
"""
import enum
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from omakure.background import BackgroundLoader, Delivered, Disconnected
from omakure.errors import FieldValidationError, OmakureError
from omakure.folder_widget import WidgetData, load_widget
from omakure.history import HistoryStore, error_entry, success_entry
from omakure.log_utils import get_logger
from omakure.ports import (
    EnvFile,
    EnvironmentConfig,
    EnvironmentRepository,
    EnvPreview,
    ScriptEntry,
    ScriptRepository,
    ScriptRunner,
    ScriptSearch,
    SearchDetails,
    SearchResult,
    SearchStatus,
)
from omakure.schemas import Field, HistoryEntry, Schema
from omakure.validation import normalize_input
from omakure.workspace import Workspace

log = get_logger("controller")

PendingRun = Tuple[Path, List[str]]


class Screen(enum.Enum):
    SCRIPT_SELECT = "script_select"
    SEARCH = "search"
    ENVIRONMENTS = "environments"
    FIELD_INPUT = "field_input"
    HISTORY = "history"
    RUNNING = "running"
    RUN_RESULT = "run_result"
    ERROR = "error"


class HistoryFocus(enum.Enum):
    LIST = "list"
    OUTPUT = "output"


class ExecutionKind(enum.Enum):
    SUCCESS = "success"
    FAILED = "failed"
    ERROR = "error"


@dataclass(frozen=True)
class ExecutionStatus:
    kind: ExecutionKind
    exit_code: Optional[int] = None

    @classmethod
    def from_history(cls, entry: HistoryEntry) -> "ExecutionStatus":
        if entry.error is not None:
            return cls(ExecutionKind.ERROR)
        if entry.success:
            return cls(ExecutionKind.SUCCESS, entry.exit_code)
        return cls(ExecutionKind.FAILED, entry.exit_code)

    def label(self) -> str:
        if self.kind is ExecutionKind.SUCCESS:
            return "success"
        if self.kind is ExecutionKind.ERROR:
            return "error"
        code = "?" if self.exit_code is None else str(self.exit_code)
        return f"failed ({code})"


@dataclass
class NavigationState:
    current_dir: Path
    entries: List[ScriptEntry] = field(default_factory=list)
    selection: int = 0
    widget: Optional[WidgetData] = None
    widget_error: Optional[str] = None
    widget_loading: bool = False
    schema_preview: Optional[Schema] = None
    schema_preview_error: Optional[str] = None
    preview_script: Optional[Path] = None
    schema_cache: Optional[Tuple[Path, Schema]] = None


@dataclass
class FieldInputState:
    schema_name: Optional[str] = None
    schema_description: Optional[str] = None
    fields: List[Field] = field(default_factory=list)
    field_index: int = 0
    field_inputs: List[str] = field(default_factory=list)
    args: List[str] = field(default_factory=list)
    error: Optional[str] = None
    failure: Optional[FieldValidationError] = None
    selected_script: Optional[Path] = None


@dataclass
class EnvironmentState:
    config: Optional[EnvironmentConfig] = None
    error: Optional[str] = None
    entries: List[EnvFile] = field(default_factory=list)
    selection: int = 0
    preview: EnvPreview = field(default_factory=list)
    preview_error: Optional[str] = None
    preview_scroll: int = 0


@dataclass
class SearchState:
    status: SearchStatus = field(default_factory=SearchStatus)
    query: str = ""
    results: List[SearchResult] = field(default_factory=list)
    selection: int = 0
    details: Optional[SearchDetails] = None
    error: Optional[str] = None


@dataclass
class HistoryState:
    entries: List[HistoryEntry] = field(default_factory=list)
    selection: int = 0
    focus: HistoryFocus = HistoryFocus.LIST


def clamp_move(index: int, delta: int, length: int) -> int:
    """Saturating move inside [0, length-1]; an empty list always yields 0."""
    if length <= 0:
        return 0
    return max(0, min(index + delta, length - 1))


def wrap_move(index: int, delta: int, length: int) -> int:
    if length <= 0:
        return 0
    return (index + delta) % length


class WorkflowController:
    def __init__(
        self,
        workspace: Workspace,
        repository: ScriptRepository,
        runner: ScriptRunner,
        environments: EnvironmentRepository,
        search: ScriptSearch,
        history_store: Optional[HistoryStore] = None,
        history: Optional[Sequence[HistoryEntry]] = None,
        widget_fn: Callable[[Path], Optional[WidgetData]] = load_widget,
    ) -> None:
        self.workspace = workspace
        self.repository = repository
        self.runner = runner
        self.environments = environments
        self.search_index = search
        self.history_store = history_store
        self.widget_fn = widget_fn
        self.widget_loader: BackgroundLoader[Optional[WidgetData]] = BackgroundLoader("widget")

        self.screen = Screen.SCRIPT_SELECT
        self.env_return: Optional[Screen] = None
        self.navigation = NavigationState(current_dir=workspace.root)
        self.field_input = FieldInputState()
        self.environment = EnvironmentState()
        self.search = SearchState(status=search.status())
        self.history = HistoryState(entries=list(history or []))
        self.pending_run: Optional[PendingRun] = None
        self.should_quit = False
        self.run_output_scroll = 0
        self.error_message: Optional[str] = None

        self.refresh_entries()
        self.load_env_config()

    # --- browsing -----------------------------------------------------
    def selected_entry(self) -> Optional[ScriptEntry]:
        entries = self.navigation.entries
        if 0 <= self.navigation.selection < len(entries):
            return entries[self.navigation.selection]
        return None

    def move_selection(self, delta: int) -> None:
        if not self.navigation.entries:
            return
        self.navigation.selection = clamp_move(self.navigation.selection, delta, len(self.navigation.entries))
        self.update_schema_preview()

    def refresh_entries(self, directory: Optional[Path] = None) -> None:
        directory = self.navigation.current_dir if directory is None else directory
        try:
            entries = self.repository.list_entries(directory)
        except OmakureError as exc:
            log.warning("list entries failed dir=%s err=%s", directory, exc)
            self.show_error(str(exc))
            return
        self.navigation.current_dir = directory
        self.navigation.entries = entries
        self.navigation.selection = 0
        self.error_message = None
        self.start_widget_load()
        self.update_schema_preview()

    def enter_selected(self) -> None:
        entry = self.selected_entry()
        if entry is None:
            return
        if entry.is_dir:
            self.refresh_entries(entry.path)
        else:
            self.load_schema(entry.path)

    def navigate_up(self) -> None:
        current = self.navigation.current_dir
        if current == self.workspace.root:
            return
        parent = current.parent
        if parent == current:
            return
        self.refresh_entries(parent)

    def refresh_status(self) -> None:
        self.start_widget_load()
        self.load_env_config()
        self.navigation.preview_script = None
        self.update_schema_preview()

    def display_path(self, path: Path) -> str:
        return self.workspace.display_path(path)

    def show_error(self, message: str) -> None:
        self.error_message = message
        self.screen = Screen.ERROR

    def dismiss_error(self) -> None:
        self.error_message = None
        self.screen = Screen.SCRIPT_SELECT

    # --- folder widget --------------------------------------------------
    def start_widget_load(self) -> None:
        directory = self.navigation.current_dir
        self.navigation.widget = None
        self.navigation.widget_error = None
        self.navigation.widget_loading = True
        self.widget_loader.start(directory, lambda: self.widget_fn(directory))

    def poll_widget_load(self) -> None:
        outcome = self.widget_loader.poll()
        if outcome is None:
            return
        if isinstance(outcome, Delivered):
            result = outcome.result
            if result.ok:
                self.navigation.widget = result.value
                self.navigation.widget_error = None
            else:
                self.navigation.widget = None
                self.navigation.widget_error = str(result.error)
            self.navigation.widget_loading = False
        elif isinstance(outcome, Disconnected):
            self.navigation.widget_loading = False

    def tick(self) -> None:
        if self.screen is Screen.SEARCH:
            self.refresh_search_status()
        self.poll_widget_load()

    # --- schema ---------------------------------------------------------
    def update_schema_preview(self) -> None:
        nav = self.navigation
        entry = self.selected_entry()
        if entry is None or entry.is_dir:
            nav.schema_preview = None
            nav.schema_preview_error = None
            nav.preview_script = None
            return
        if nav.preview_script == entry.path:
            return
        try:
            schema = self.repository.read_schema(entry.path).with_sorted_fields()
        except OmakureError as exc:
            nav.schema_preview = None
            nav.schema_preview_error = str(exc)
            nav.preview_script = entry.path
            return
        nav.schema_preview = schema
        nav.schema_preview_error = None
        nav.preview_script = entry.path
        nav.schema_cache = (entry.path, schema)

    def load_schema(self, script: Path) -> None:
        cache = self.navigation.schema_cache
        try:
            if cache is not None and cache[0] == script:
                schema = cache[1]
            else:
                schema = self.repository.read_schema(script)
        except OmakureError as exc:
            log.warning("schema load failed script=%s err=%s", script, exc)
            self.show_error(str(exc))
            return
        schema = schema.with_sorted_fields()
        self.navigation.schema_cache = (script, schema)
        self.load_env_config()

        fi = self.field_input
        fi.schema_name = schema.name
        fi.schema_description = schema.description
        fi.fields = list(schema.fields)
        fi.field_index = 0
        fi.field_inputs = self.build_field_inputs()
        fi.args = []
        fi.error = None
        fi.failure = None
        fi.selected_script = script
        if not fi.fields:
            self._queue_run(script, [])
        else:
            self.screen = Screen.FIELD_INPUT

    def build_field_inputs(self) -> List[str]:
        defaults: Dict[str, str] = {}
        if self.environment.config is not None:
            defaults = self.environment.config.defaults
        return [defaults.get(f.name.lower(), "") for f in self.field_input.fields]

    # --- form -----------------------------------------------------------
    def move_field_selection(self, delta: int) -> None:
        if not self.field_input.fields:
            return
        self.field_input.field_index = wrap_move(self.field_input.field_index, delta, len(self.field_input.fields))
        self.field_input.error = None
        self.field_input.failure = None

    def append_field_char(self, ch: str) -> None:
        fi = self.field_input
        if 0 <= fi.field_index < len(fi.field_inputs):
            fi.field_inputs[fi.field_index] += ch
            fi.error = None
            fi.failure = None

    def pop_field_char(self) -> None:
        fi = self.field_input
        if 0 <= fi.field_index < len(fi.field_inputs):
            fi.field_inputs[fi.field_index] = fi.field_inputs[fi.field_index][:-1]
            fi.error = None
            fi.failure = None

    def submit_form(self) -> None:
        fi = self.field_input
        args: List[str] = []
        for idx, fld in enumerate(fi.fields):
            raw = fi.field_inputs[idx] if idx < len(fi.field_inputs) else ""
            try:
                value = normalize_input(fld, raw)
            except FieldValidationError as exc:
                fi.error = f"{fld.name}: {exc}"
                fi.failure = exc
                fi.field_index = idx
                return
            if value is not None:
                args.extend([fld.arg_flag, value])
        fi.args = args
        fi.error = None
        fi.failure = None
        if fi.selected_script is None:
            self.should_quit = True
            return
        self._queue_run(fi.selected_script, args)

    def _queue_run(self, script: Path, args: List[str]) -> None:
        self.pending_run = (script, list(args))
        self.screen = Screen.RUNNING

    def back_to_script_select(self) -> None:
        self.screen = Screen.SCRIPT_SELECT
        self.field_input = FieldInputState()
        self.pending_run = None

    # --- running --------------------------------------------------------
    def take_pending_run(self) -> Optional[PendingRun]:
        pending, self.pending_run = self.pending_run, None
        return pending

    def execute_run(self, script: Path, args: List[str]) -> HistoryEntry:
        """Blocks until the script exits, then records and shows the result."""
        log.info("run start script=%s args=%s", self.display_path(script), len(args))
        try:
            output = self.runner.run(script, args)
        except OmakureError as exc:
            log.warning("run error script=%s err=%s", self.display_path(script), exc)
            entry = error_entry(self.workspace, script, args, str(exc))
        else:
            entry = success_entry(self.workspace, script, args, output)
        if self.history_store is not None:
            try:
                self.history_store.record(entry)
            except OSError as exc:
                log.warning("history write failed script=%s err=%s", entry.script, exc)
        self.add_history_entry(entry)
        self.back_to_script_select()
        self.reset_run_output_scroll()
        self.screen = Screen.RUN_RESULT
        return entry

    def reset_run_output_scroll(self) -> None:
        self.run_output_scroll = 0

    def scroll_run_output(self, delta: int) -> None:
        self.run_output_scroll = max(0, self.run_output_scroll + delta)

    # --- history --------------------------------------------------------
    def enter_history(self) -> None:
        self.history.focus = HistoryFocus.LIST
        self.reset_run_output_scroll()
        self.screen = Screen.HISTORY

    def toggle_history_focus(self) -> None:
        if self.history.focus is HistoryFocus.LIST:
            self.history.focus = HistoryFocus.OUTPUT
        else:
            self.history.focus = HistoryFocus.LIST

    def move_history_selection(self, delta: int) -> None:
        if not self.history.entries:
            return
        self.history.selection = clamp_move(self.history.selection, delta, len(self.history.entries))
        self.reset_run_output_scroll()

    def add_history_entry(self, entry: HistoryEntry) -> None:
        self.history.entries.insert(0, entry)
        self.history.selection = 0

    def current_history_entry(self) -> Optional[HistoryEntry]:
        entries = self.history.entries
        if 0 <= self.history.selection < len(entries):
            return entries[self.history.selection]
        return None

    # --- search ---------------------------------------------------------
    def enter_search(self) -> None:
        self.search.status = self.search_index.status()
        self.screen = Screen.SEARCH
        self.refresh_search_results()

    def exit_search(self) -> None:
        self.screen = Screen.SCRIPT_SELECT

    def refresh_search_status(self) -> None:
        status = self.search_index.status()
        if status != self.search.status:
            self.search.status = status
            if self.screen is Screen.SEARCH:
                self.refresh_search_results(keep_selection=True)

    def append_search_char(self, ch: str) -> None:
        self.search.query += ch
        self.refresh_search_results()

    def pop_search_char(self) -> None:
        self.search.query = self.search.query[:-1]
        self.refresh_search_results()

    def refresh_search_results(self, keep_selection: bool = False) -> None:
        """Re-run the query; the cursor only returns to the top when the query changed."""
        try:
            self.search.results = self.search_index.query(self.search.query)
            self.search.error = None
        except OmakureError as exc:
            self.search.results = []
            self.search.error = str(exc)
        if keep_selection:
            self.search.selection = clamp_move(self.search.selection, 0, len(self.search.results))
        else:
            self.search.selection = 0
        self.update_search_details()

    def move_search_selection(self, delta: int) -> None:
        if not self.search.results:
            return
        self.search.selection = clamp_move(self.search.selection, delta, len(self.search.results))
        self.update_search_details()

    def update_search_details(self) -> None:
        self.search.details = None
        results = self.search.results
        if not 0 <= self.search.selection < len(results):
            return
        try:
            self.search.details = self.search_index.load_details(results[self.search.selection].script_path)
            self.search.error = None
        except OmakureError as exc:
            self.search.error = str(exc)

    def open_selected_search(self) -> None:
        results = self.search.results
        if not 0 <= self.search.selection < len(results):
            return
        self.load_schema(self.workspace.root / results[self.search.selection].script_path)

    # --- environments ---------------------------------------------------
    def enter_envs(self) -> None:
        self.env_return = self.screen
        self.load_env_config()
        self.screen = Screen.ENVIRONMENTS

    def exit_envs(self) -> None:
        self.screen = self.env_return or Screen.SCRIPT_SELECT
        self.env_return = None

    def load_env_config(self) -> None:
        env = self.environment
        error: Optional[str] = None
        config: Optional[EnvironmentConfig] = None
        try:
            config = self.environments.load_environment_config()
        except OmakureError as exc:
            error = str(exc)
        try:
            entries = self.environments.list_env_files()
        except OmakureError as exc:
            error = error or str(exc)
            entries = []

        if not entries:
            selected = 0
        elif config is not None and config.active:
            names = [e.name for e in entries]
            selected = names.index(config.active) if config.active in names else 0
        else:
            selected = min(env.selection, len(entries) - 1)

        env.entries = entries
        env.selection = selected
        env.config = config
        env.error = error
        self.update_env_preview()

    def update_env_preview(self) -> None:
        env = self.environment
        env.preview_scroll = 0
        env.preview_error = None
        if not 0 <= env.selection < len(env.entries):
            env.preview = []
            return
        envs_dir = env.config.envs_dir if env.config is not None else self.workspace.envs_dir
        try:
            env.preview = self.environments.load_env_preview(envs_dir / env.entries[env.selection].name)
        except OmakureError as exc:
            env.preview = []
            env.preview_error = str(exc)

    def move_env_selection(self, delta: int) -> None:
        if not self.environment.entries:
            return
        self.environment.selection = clamp_move(self.environment.selection, delta, len(self.environment.entries))
        self.update_env_preview()

    def scroll_env_preview(self, delta: int) -> None:
        self.environment.preview_scroll = max(0, self.environment.preview_scroll + delta)

    def activate_selected_env(self) -> None:
        env = self.environment
        if not 0 <= env.selection < len(env.entries):
            return
        name = env.entries[env.selection].name
        try:
            self.environments.set_active_env(name)
        except OmakureError as exc:
            env.error = str(exc)
            return
        log.info("environment activated name=%s", name)
        self.load_env_config()

    def deactivate_env(self) -> None:
        try:
            self.environments.set_active_env(None)
        except OmakureError as exc:
            self.environment.error = str(exc)
            return
        log.info("environment deactivated")
        self.load_env_config()

    def quit(self) -> None:
        self.should_quit = True
