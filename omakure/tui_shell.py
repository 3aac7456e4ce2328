import os
import sys
import time
from typing import Any, Dict, List, Optional

from rich.console import Console, Group
from rich.layout import Layout
from rich.live import Live
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from omakure.config_loader import tick_seconds
from omakure.controller import ExecutionKind, ExecutionStatus, HistoryFocus, Screen, WorkflowController
from omakure.environments import FsEnvironmentRepository
from omakure.history import HistoryStore, format_output, format_timestamp
from omakure.log_utils import get_logger
from omakure.runner import MultiScriptRunner
from omakure.schemas import Schema
from omakure.search_index import DisabledSearch, SearchIndex
from omakure.workspace import Workspace
from omakure.workspace_repository import FsWorkspaceRepository

log = get_logger("tui")

THEME = {
    "panel": "cyan",
    "header": "bright_cyan",
    "selected": "reverse",
    "dir": "bold blue",
    "key": "bold yellow",
    "dim": "grey50",
    "ok": "green",
    "fail": "red",
    "warn": "yellow",
}

PAGE = 10

_CONTROL_KEYS = {
    "\r": "ENTER",
    "\n": "ENTER",
    "\t": "TAB",
    "\x7f": "BACKSPACE",
    "\x08": "BACKSPACE",
    "\x05": "CTRL_E",
}


def _get_key(timeout: Optional[float] = None) -> Optional[str]:
    """
    Read one key, waiting at most `timeout` seconds. Returns None on timeout.
    Special keys come back as names (UP, DOWN, PGUP, ENTER, ESC, ...).
    """
    if os.name == "nt":
        import msvcrt

        if timeout is not None:
            deadline = time.monotonic() + timeout
            while not msvcrt.kbhit():
                if time.monotonic() >= deadline:
                    return None
                time.sleep(0.01)
        ch = msvcrt.getch()
        if ch in (b"\x00", b"\xe0"):
            nxt = msvcrt.getch()
            arrows = {b"H": "UP", b"P": "DOWN", b"K": "LEFT", b"M": "RIGHT", b"I": "PGUP", b"Q": "PGDN",
                      b"G": "HOME", b"O": "END"}
            return arrows.get(nxt, "")
        if ch == b"\x03":
            raise KeyboardInterrupt()
        if ch == b"\x1b":
            return "ESC"
        text = ch.decode("utf-8", errors="ignore")
        return _CONTROL_KEYS.get(text, text)

    import select
    import termios
    import tty

    fd = sys.stdin.fileno()
    old = termios.tcgetattr(fd)
    try:
        tty.setraw(fd, termios.TCSANOW)
        if timeout is not None and not select.select([fd], [], [], timeout)[0]:
            return None
        ch = os.read(fd, 1).decode("utf-8", errors="ignore")
        if ch == "\x03":
            raise KeyboardInterrupt()
        if ch != "\x1b":
            return _CONTROL_KEYS.get(ch, ch)
        seq = ""
        while len(seq) < 4 and select.select([fd], [], [], 0.02)[0]:
            seq += os.read(fd, 1).decode("utf-8", errors="ignore")
            if seq[-1].isalpha() or seq[-1] == "~":
                break
        return _ESCAPES.get(seq, "ESC")
    finally:
        termios.tcsetattr(fd, termios.TCSADRAIN, old)


_ESCAPES = {
    "": "ESC",
    "[A": "UP",
    "[B": "DOWN",
    "[C": "RIGHT",
    "[D": "LEFT",
    "OA": "UP",
    "OB": "DOWN",
    "OC": "RIGHT",
    "OD": "LEFT",
    "[5~": "PGUP",
    "[6~": "PGDN",
    "[H": "HOME",
    "[F": "END",
}


def _is_text(key: str) -> bool:
    return len(key) == 1 and key.isprintable()


# --- key dispatch ----------------------------------------------------------
def _keys_script_select(ctl: WorkflowController, key: str) -> None:
    if key in ("q", "ESC"):
        ctl.quit()
    elif key in ("UP", "k"):
        ctl.move_selection(-1)
    elif key in ("DOWN", "j"):
        ctl.move_selection(1)
    elif key == "PGUP":
        ctl.move_selection(-PAGE)
    elif key == "PGDN":
        ctl.move_selection(PAGE)
    elif key in ("ENTER", "RIGHT", "l"):
        ctl.enter_selected()
    elif key in ("LEFT", "BACKSPACE"):
        ctl.navigate_up()
    elif key in ("/", "s"):
        ctl.enter_search()
    elif key in ("e", "CTRL_E"):
        ctl.enter_envs()
    elif key == "h":
        ctl.enter_history()
    elif key == "r":
        ctl.refresh_status()


def _keys_field_input(ctl: WorkflowController, key: str) -> None:
    if key == "ESC":
        ctl.back_to_script_select()
    elif key in ("TAB", "DOWN"):
        ctl.move_field_selection(1)
    elif key == "UP":
        ctl.move_field_selection(-1)
    elif key == "ENTER":
        ctl.submit_form()
    elif key == "BACKSPACE":
        ctl.pop_field_char()
    elif key == "CTRL_E":
        ctl.enter_envs()
    elif _is_text(key):
        ctl.append_field_char(key)


def _keys_search(ctl: WorkflowController, key: str) -> None:
    if key == "ESC":
        ctl.exit_search()
    elif key == "UP":
        ctl.move_search_selection(-1)
    elif key == "DOWN":
        ctl.move_search_selection(1)
    elif key == "PGUP":
        ctl.move_search_selection(-PAGE)
    elif key == "PGDN":
        ctl.move_search_selection(PAGE)
    elif key == "ENTER":
        ctl.open_selected_search()
    elif key == "BACKSPACE":
        ctl.pop_search_char()
    elif key == "CTRL_E":
        ctl.enter_envs()
    elif _is_text(key):
        ctl.append_search_char(key)


def _keys_environments(ctl: WorkflowController, key: str) -> None:
    if key in ("ESC", "q"):
        ctl.exit_envs()
    elif key in ("UP", "k"):
        ctl.move_env_selection(-1)
    elif key in ("DOWN", "j"):
        ctl.move_env_selection(1)
    elif key == "ENTER":
        ctl.activate_selected_env()
    elif key == "d":
        ctl.deactivate_env()
    elif key == "PGUP":
        ctl.scroll_env_preview(-PAGE)
    elif key == "PGDN":
        ctl.scroll_env_preview(PAGE)


def _keys_history(ctl: WorkflowController, key: str) -> None:
    if key in ("ESC", "q"):
        ctl.back_to_script_select()
    elif key == "TAB":
        ctl.toggle_history_focus()
    elif key in ("UP", "k", "DOWN", "j", "PGUP", "PGDN"):
        step = PAGE if key in ("PGUP", "PGDN") else 1
        delta = -step if key in ("UP", "k", "PGUP") else step
        if ctl.history.focus is HistoryFocus.OUTPUT:
            ctl.scroll_run_output(delta)
        else:
            ctl.move_history_selection(delta)


def _keys_run_result(ctl: WorkflowController, key: str) -> None:
    if key in ("ESC", "ENTER", "q"):
        ctl.screen = Screen.SCRIPT_SELECT
    elif key in ("UP", "k"):
        ctl.scroll_run_output(-1)
    elif key in ("DOWN", "j"):
        ctl.scroll_run_output(1)
    elif key == "PGUP":
        ctl.scroll_run_output(-PAGE)
    elif key == "PGDN":
        ctl.scroll_run_output(PAGE)
    elif key == "h":
        ctl.enter_history()


def _keys_error(ctl: WorkflowController, key: str) -> None:
    if key in ("ESC", "ENTER", "q"):
        ctl.dismiss_error()


_DISPATCH = {
    Screen.SCRIPT_SELECT: _keys_script_select,
    Screen.FIELD_INPUT: _keys_field_input,
    Screen.SEARCH: _keys_search,
    Screen.ENVIRONMENTS: _keys_environments,
    Screen.HISTORY: _keys_history,
    Screen.RUN_RESULT: _keys_run_result,
    Screen.ERROR: _keys_error,
}


def handle_key(ctl: WorkflowController, key: str) -> None:
    handler = _DISPATCH.get(ctl.screen)
    if handler is not None and key:
        handler(ctl, key)


# --- rendering -------------------------------------------------------------
def _window(lines: List[Any], offset: int, height: int) -> List[Any]:
    offset = max(0, min(offset, max(len(lines) - 1, 0)))
    return lines[offset:offset + height]


def _visible_range(selected: int, total: int, height: int) -> range:
    start = max(0, min(selected - height // 2, total - height))
    return range(start, min(total, start + height))


def _render_header(ctl: WorkflowController) -> Panel:
    env = ctl.environment.config.active if ctl.environment.config is not None else None
    text = Text()
    text.append("omakure", style=THEME["header"])
    text.append(f"  {ctl.workspace.root}", style=THEME["dim"])
    text.append(f"  env: {env or '-'}", style=THEME["key"])
    return Panel(text, style=THEME["panel"])


def _render_help(ctl: WorkflowController) -> Panel:
    hints = {
        Screen.SCRIPT_SELECT: "enter=open  left/bksp=up  /=search  e=envs  h=history  r=refresh  q=quit",
        Screen.FIELD_INPUT: "type to edit  tab/down=next  up=prev  enter=run  ctrl+e=envs  esc=back",
        Screen.SEARCH: "type to filter  up/down=move  enter=open  ctrl+e=envs  esc=back",
        Screen.ENVIRONMENTS: "up/down=move  enter=activate  d=deactivate  pgup/pgdn=scroll  esc=back",
        Screen.HISTORY: "up/down=move  tab=focus list/output  esc=back",
        Screen.RUNNING: "running... (no cancellation)",
        Screen.RUN_RESULT: "up/down=scroll  h=history  enter/esc=back",
        Screen.ERROR: "enter/esc=back",
    }
    return Panel(hints.get(ctl.screen, ""), title="Keys", style=THEME["panel"])


def _render_entries(ctl: WorkflowController, height: int) -> Panel:
    nav = ctl.navigation
    table = Table(show_header=False, box=None, expand=True)
    table.add_column("name")
    if not nav.entries:
        table.add_row(Text("(no scripts here)", style=THEME["dim"]))
    for idx in _visible_range(nav.selection, len(nav.entries), height):
        entry = nav.entries[idx]
        label = f"{entry.path.name}/" if entry.is_dir else entry.path.name
        style = THEME["dir"] if entry.is_dir else ""
        if idx == nav.selection:
            style = f"{style} {THEME['selected']}".strip()
        table.add_row(Text(label, style=style))
    title = ctl.display_path(nav.current_dir) or "."
    return Panel(table, title=f"Scripts: {title}", style=THEME["panel"])


def render_schema(schema: Schema) -> Group:
    parts: List[Any] = [Text(schema.name, style=THEME["header"])]
    if schema.description:
        parts.append(Text(schema.description))
    if schema.tags:
        parts.append(Text("tags: " + ", ".join(schema.tags), style=THEME["dim"]))
    if schema.fields:
        table = Table(show_header=True, header_style=THEME["header"], expand=True)
        table.add_column("field")
        table.add_column("type", style=THEME["dim"])
        table.add_column("req", width=4)
        table.add_column("prompt")
        for f in schema.fields:
            table.add_row(f.name, f.kind, "yes" if f.is_required else "", f.prompt or "")
        parts.append(table)
    else:
        parts.append(Text("(no inputs; runs immediately)", style=THEME["dim"]))
    if schema.outputs:
        parts.append(Text("outputs: " + ", ".join(f"{o.name}:{o.kind}" for o in schema.outputs), style=THEME["dim"]))
    if schema.queue is not None:
        if schema.queue.matrix is not None:
            for value in schema.queue.matrix.values:
                parts.append(Text(f"matrix {value.name}: {', '.join(value.values)}", style=THEME["dim"]))
        for case in schema.queue.cases or []:
            values = ", ".join(f"{v.name}={v.value}" for v in case.values)
            parts.append(Text(f"case {case.name or '-'}: {values}", style=THEME["dim"]))
    return Group(*parts)


def _render_preview(ctl: WorkflowController) -> Panel:
    nav = ctl.navigation
    if nav.schema_preview_error:
        return Panel(Text(nav.schema_preview_error, style=THEME["fail"]), title="Schema", style=THEME["panel"])
    if nav.schema_preview is not None:
        return Panel(render_schema(nav.schema_preview), title="Schema", style=THEME["panel"])
    return Panel(Text("Select a script to preview its inputs.", style=THEME["dim"]), title="Schema",
                 style=THEME["panel"])


def _render_widget(ctl: WorkflowController) -> Panel:
    nav = ctl.navigation
    if nav.widget_loading:
        return Panel(Text("loading...", style=THEME["dim"]), title="Folder", style=THEME["panel"])
    if nav.widget_error:
        return Panel(Text(nav.widget_error, style=THEME["fail"]), title="Folder", style=THEME["panel"])
    if nav.widget is None:
        return Panel(Text("", style=THEME["dim"]), title="Folder", style=THEME["panel"])
    return Panel("\n".join(nav.widget.lines), title=nav.widget.title or "Folder", style=THEME["panel"])


def _render_field_input(ctl: WorkflowController) -> Panel:
    fi = ctl.field_input
    table = Table(show_header=True, header_style=THEME["header"], expand=True)
    table.add_column("field")
    table.add_column("value")
    table.add_column("type", style=THEME["dim"])
    for idx, f in enumerate(fi.fields):
        label = f"{f.name}{' *' if f.is_required else ''}"
        value = fi.field_inputs[idx] if idx < len(fi.field_inputs) else ""
        if not value and f.default is not None:
            value_text = Text(f"default: {f.default}", style=THEME["dim"])
        else:
            value_text = Text(value + ("_" if idx == fi.field_index else ""))
        style = THEME["selected"] if idx == fi.field_index else ""
        table.add_row(label, value_text, f.kind, style=style)
    parts: List[Any] = []
    if fi.schema_description:
        parts.append(Text(fi.schema_description, style=THEME["dim"]))
    parts.append(table)
    if 0 <= fi.field_index < len(fi.fields):
        current = fi.fields[fi.field_index]
        hint = current.prompt or current.name
        if current.choices:
            hint += f"  [{', '.join(current.choices)}]"
        parts.append(Text(hint, style=THEME["key"]))
    if fi.error:
        parts.append(Text(fi.error, style=THEME["fail"]))
    return Panel(Group(*parts), title=fi.schema_name or "Inputs", style=THEME["panel"])


def _render_search(ctl: WorkflowController, height: int) -> Layout:
    s = ctl.search
    table = Table(show_header=False, box=None, expand=True)
    table.add_column("script")
    for idx in _visible_range(s.selection, len(s.results), height):
        result = s.results[idx]
        style = THEME["selected"] if idx == s.selection else ""
        label = f"{result.name}  ({result.script_path.as_posix()})"
        if result.schema_error:
            label += "  !"
        table.add_row(Text(label, style=style))
    if not s.results:
        table.add_row(Text("(no matches)", style=THEME["dim"]))
    title = f"Search: {s.query}_   [{s.status.label()}]"
    left = Panel(table, title=title, style=THEME["panel"])
    if s.error:
        right = Panel(Text(s.error, style=THEME["fail"]), title="Details", style=THEME["panel"])
    elif s.details is None:
        right = Panel("", title="Details", style=THEME["panel"])
    elif s.details.error:
        right = Panel(Text(s.details.error, style=THEME["fail"]), title="Details", style=THEME["panel"])
    else:
        right = Panel(render_schema(s.details.schema), title="Details", style=THEME["panel"])
    layout = Layout()
    layout.split_row(Layout(left, ratio=2), Layout(right, ratio=3))
    return layout


def _render_environments(ctl: WorkflowController, height: int) -> Layout:
    env = ctl.environment
    active = env.config.active if env.config is not None else None
    table = Table(show_header=False, box=None, expand=True)
    table.add_column("env")
    for idx, entry in enumerate(env.entries):
        marker = "* " if entry.name == active else "  "
        style = THEME["selected"] if idx == env.selection else ""
        table.add_row(Text(marker + entry.name, style=style))
    if not env.entries:
        table.add_row(Text(f"(no files in {ctl.workspace.envs_dir})", style=THEME["dim"]))
    parts: List[Any] = [table]
    if env.error:
        parts.append(Text(env.error, style=THEME["fail"]))
    left = Panel(Group(*parts), title="Environments", style=THEME["panel"])
    if env.preview_error:
        body: Any = Text(env.preview_error, style=THEME["fail"])
    elif not env.preview:
        body = Text("No entries found.", style=THEME["dim"])
    else:
        lines = [Text.assemble((k, THEME["key"]), (" = ", THEME["dim"]), v) for k, v in env.preview]
        body = Group(*_window(lines, env.preview_scroll, height))
    right = Panel(body, title="Preview", style=THEME["panel"])
    layout = Layout()
    layout.split_row(Layout(left, ratio=2), Layout(right, ratio=3))
    return layout


def _status_text(status: ExecutionStatus) -> Text:
    style = THEME["ok"] if status.kind is ExecutionKind.SUCCESS else THEME["fail"]
    return Text(status.label(), style=style)


def _render_output(ctl: WorkflowController, height: int, title: str) -> Panel:
    entry = ctl.current_history_entry()
    if entry is None:
        return Panel(Text("No runs yet.", style=THEME["dim"]), title=title, style=THEME["panel"])
    lines = format_output(entry).splitlines() or ["(no output)"]
    head = Text.assemble((entry.script, THEME["header"]), "  ", _status_text(ExecutionStatus.from_history(entry)),
                         "  ", (" ".join(entry.args), THEME["dim"]))
    body = "\n".join(_window(lines, ctl.run_output_scroll, height))
    return Panel(Group(head, Text(body)), title=title, style=THEME["panel"])


def _render_history(ctl: WorkflowController, height: int) -> Layout:
    h = ctl.history
    table = Table(show_header=True, header_style=THEME["header"], expand=True)
    table.add_column("when", width=16)
    table.add_column("script")
    table.add_column("status")
    for idx in _visible_range(h.selection, len(h.entries), height):
        entry = h.entries[idx]
        style = THEME["selected"] if idx == h.selection else ""
        table.add_row(format_timestamp(entry.timestamp), entry.script,
                      _status_text(ExecutionStatus.from_history(entry)), style=style)
    focus = "list" if h.focus is HistoryFocus.LIST else "output"
    layout = Layout()
    layout.split_row(
        Layout(Panel(table, title=f"History [{focus}]", style=THEME["panel"]), ratio=2),
        Layout(_render_output(ctl, height, "Output"), ratio=3),
    )
    return layout


def render(ctl: WorkflowController, height: int = 30) -> Layout:
    body_height = max(height - 10, 5)
    if ctl.screen is Screen.SCRIPT_SELECT:
        body = Layout()
        body.split_row(Layout(_render_entries(ctl, body_height), ratio=2), Layout(name="side", ratio=3))
        body["side"].split_column(Layout(_render_preview(ctl), ratio=3), Layout(_render_widget(ctl), ratio=1))
    elif ctl.screen is Screen.FIELD_INPUT:
        body = Layout(_render_field_input(ctl))
    elif ctl.screen is Screen.SEARCH:
        body = _render_search(ctl, body_height)
    elif ctl.screen is Screen.ENVIRONMENTS:
        body = _render_environments(ctl, body_height)
    elif ctl.screen is Screen.HISTORY:
        body = _render_history(ctl, body_height)
    elif ctl.screen is Screen.RUNNING:
        script = ctl.pending_run[0] if ctl.pending_run else None
        label = ctl.display_path(script) if script is not None else ""
        body = Layout(Panel(Text(f"Running {label} ...", style=THEME["warn"]), title="Running", style=THEME["panel"]))
    elif ctl.screen is Screen.RUN_RESULT:
        body = Layout(_render_output(ctl, body_height, "Result"))
    else:
        body = Layout(Panel(Text(ctl.error_message or "Unknown error", style=THEME["fail"]), title="Error",
                            style=THEME["panel"]))
    layout = Layout()
    layout.split_column(
        Layout(_render_header(ctl), size=3),
        body,
        Layout(_render_help(ctl), size=3),
    )
    return layout


# --- loop ------------------------------------------------------------------
def build_controller(workspace: Workspace, cfg: Dict[str, Any]) -> WorkflowController:
    repository = FsWorkspaceRepository(workspace.root)
    store = HistoryStore(workspace.history_dir)
    entries = store.load_all()
    limit = int(cfg.get("history_limit") or 0)
    if limit > 0:
        entries = entries[:limit]
    if (cfg.get("search") or {}).get("enabled", True):
        search = SearchIndex(workspace.root, repository)
        search.start_background_rebuild()
    else:
        search = DisabledSearch()
    return WorkflowController(
        workspace=workspace,
        repository=repository,
        runner=MultiScriptRunner(),
        environments=FsEnvironmentRepository(workspace.envs_dir),
        search=search,
        history_store=store,
        history=entries,
    )


def run_tui(workspace: Workspace, cfg: Dict[str, Any]) -> None:
    console = Console()
    tick = tick_seconds(cfg)
    ctl = build_controller(workspace, cfg)
    log.info("tui start root=%s", workspace.root)
    with Live(render(ctl, console.height), console=console, screen=True, auto_refresh=False) as live:
        while not ctl.should_quit:
            ctl.tick()
            live.update(render(ctl, console.height), refresh=True)
            key = _get_key(tick)
            if key:
                handle_key(ctl, key)
            if ctl.pending_run is not None:
                live.update(render(ctl, console.height), refresh=True)
                script, args = ctl.take_pending_run()
                ctl.execute_run(script, args)
    log.info("tui exit")
