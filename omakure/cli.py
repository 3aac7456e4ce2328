import argparse
import os
import sys
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from omakure import __version__
from omakure.config_loader import load_config
from omakure.controller import ExecutionStatus
from omakure.errors import DependencyMissing, OmakureError
from omakure.history import HistoryStore, error_entry, format_timestamp, success_entry
from omakure.log_utils import get_logger, setup_logger
from omakure.runner import MultiScriptRunner
from omakure.runtime import script_extensions
from omakure.system_checks import (
    ensure_bash_installed,
    ensure_git_installed,
    ensure_jq_installed,
    ensure_powershell_installed,
    ensure_python_installed,
)
from omakure.tui_shell import run_tui
from omakure.workspace import SCRIPTS_DIR_ENV_VARS, Workspace, resolve_scripts_dir
from omakure.workspace_repository import FsWorkspaceRepository

log = get_logger("cli")


class ScriptNotFound(OmakureError):
    pass


def _setup_logging(workspace: Workspace, cfg: Dict[str, Any]) -> None:
    setup_logger(workspace.log_path, stdout=True if cfg.get("log_stdout") else None)


def resolve_script_path(script: str, root: Path) -> Path:
    path = Path(script)
    if not path.is_absolute():
        path = root / path
    if path.exists():
        if path.is_file():
            return path
        raise ScriptNotFound(f"Script is not a file: {path}")
    if path.suffix:
        raise ScriptNotFound(f"Script not found: {path}")
    for ext in script_extensions():
        candidate = path.with_name(f"{path.name}.{ext}")
        if candidate.is_file():
            return candidate
    raise ScriptNotFound(f"Script not found: {path}")


def _print_stream(text: str, stream) -> None:
    if not text.strip():
        return
    stream.write(text if text.endswith("\n") else text + "\n")


def cmd_run(workspace: Workspace, cfg: Dict[str, Any], script: str, args: List[str]) -> int:
    workspace.ensure_layout()
    _setup_logging(workspace, cfg)
    path = resolve_script_path(script, workspace.root)
    store = HistoryStore(workspace.history_dir)
    try:
        output = MultiScriptRunner().run(path, args)
    except OmakureError as exc:
        print(str(exc), file=sys.stderr)
        entry = error_entry(workspace, path, args, str(exc))
        _record(store, entry)
        return 1
    _print_stream(output.stdout, sys.stdout)
    _print_stream(output.stderr, sys.stderr)
    _record(store, success_entry(workspace, path, args, output))
    if output.success:
        return 0
    return output.exit_code if output.exit_code is not None else 1


def _record(store: HistoryStore, entry) -> None:
    try:
        store.record(entry)
    except OSError as exc:
        log.warning("history write failed script=%s err=%s", entry.script, exc)


def cmd_scripts(workspace: Workspace) -> int:
    scripts = sorted(FsWorkspaceRepository(workspace.root).list_scripts_recursive())
    print(f"Scripts folder: {workspace.root}")
    if not scripts:
        print("(no scripts found)")
        return 0
    for script in scripts:
        print(f" - {workspace.display_path(script)}")
    return 0


def _check(label: str, fn: Callable[[], None], required: bool) -> bool:
    try:
        fn()
    except DependencyMissing as exc:
        print(f"  {label}: {'ERROR' if required else 'WARN'} - {exc}")
        return not required
    print(f"  {label}: OK")
    return True


def _check_path(label: str, path: Path) -> None:
    if path.exists():
        print(f"  {label}: OK - {path}")
    else:
        print(f"  {label}: WARN - {path} (not created yet)")


def cmd_doctor(workspace: Workspace) -> int:
    print("Checks:")
    ok = True
    ok &= _check("git", ensure_git_installed, required=True)
    ok &= _check("bash", ensure_bash_installed, required=True)
    ok &= _check("jq", ensure_jq_installed, required=True)
    _check("powershell", ensure_powershell_installed, required=False)
    _check("python", ensure_python_installed, required=False)
    _check_path("workspace_root", workspace.root)
    _check_path("omaken_dir", workspace.omaken_dir)
    _check_path("history_dir", workspace.history_dir)
    _check_path("workspace_config", workspace.config_path)
    if not ok:
        print("One or more checks failed.")
        return 1
    print("All checks passed.")
    return 0


def cmd_config(workspace: Workspace, cfg: Dict[str, Any]) -> int:
    print(f"Version: {__version__}")
    print(f"Workspace root: {workspace.root}")
    print(f"Omaken dir: {workspace.omaken_dir}")
    print(f"History dir: {workspace.history_dir}")
    print(f"Workspace config: {workspace.config_path}")
    print(f"Environments dir: {workspace.envs_dir}")
    print(f"Active environment file: {workspace.envs_active_path}")
    print(f"Log file: {workspace.log_path}")
    print(f"Tick: {cfg.get('tick_ms')}ms")
    print(f"Search: {'on' if (cfg.get('search') or {}).get('enabled', True) else 'off'}")
    for var in SCRIPTS_DIR_ENV_VARS:
        value = os.environ.get(var)
        if value:
            print(f"{var}: {value}")
    return 0


def cmd_history(workspace: Workspace, limit: int) -> int:
    entries = HistoryStore(workspace.history_dir).load_all()
    if limit > 0:
        entries = entries[:limit]
    if not entries:
        print("(no runs recorded)")
        return 0
    for entry in entries:
        status = ExecutionStatus.from_history(entry).label()
        args = " ".join(entry.args)
        print(f"{format_timestamp(entry.timestamp)}  {status:<12} {entry.script} {args}".rstrip())
    return 0


def cmd_tui(workspace: Workspace, cfg: Dict[str, Any]) -> int:
    workspace.ensure_layout()
    _setup_logging(workspace, cfg)
    run_tui(workspace, cfg)
    return 0


def build_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--scripts-dir", default=argparse.SUPPRESS, help="Scripts directory override")

    parser = argparse.ArgumentParser(prog="omakure", description="Navigate and run automation scripts")
    parser.add_argument("--version", action="store_true", help="Print version and exit")
    parser.add_argument("--scripts-dir", default=None, help="Scripts directory override")
    sub = parser.add_subparsers(dest="command", required=False)

    p_tui = sub.add_parser("tui", parents=[common], help="Start the interactive shell (default)")
    p_tui.set_defaults(func=lambda ws, cfg, args: cmd_tui(ws, cfg))

    p_run = sub.add_parser("run", parents=[common], help="Run a script without the TUI")
    p_run.add_argument("script", help="Script name or path (extension optional)")
    p_run.add_argument("args", nargs=argparse.REMAINDER, help="Arguments forwarded to the script")
    p_run.set_defaults(func=lambda ws, cfg, args: cmd_run(ws, cfg, args.script, list(args.args)))

    p_scripts = sub.add_parser("scripts", parents=[common], help="List available scripts")
    p_scripts.set_defaults(func=lambda ws, cfg, args: cmd_scripts(ws))

    p_doctor = sub.add_parser("doctor", aliases=["check"], parents=[common],
                              help="Check runtime dependencies and workspace")
    p_doctor.set_defaults(func=lambda ws, cfg, args: cmd_doctor(ws))

    p_config = sub.add_parser("config", aliases=["env"], parents=[common], help="Show resolved paths and env")
    p_config.set_defaults(func=lambda ws, cfg, args: cmd_config(ws, cfg))

    p_hist = sub.add_parser("history", parents=[common], help="List recorded runs, newest first")
    p_hist.add_argument("--limit", type=int, default=20, help="Max entries (0 = all)")
    p_hist.set_defaults(func=lambda ws, cfg, args: cmd_history(ws, args.limit))

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.version:
        print(__version__)
        return 0
    workspace = Workspace(resolve_scripts_dir(args.scripts_dir))
    cfg = load_config(workspace.config_path)
    if not getattr(args, "command", None):
        return cmd_tui(workspace, cfg)
    try:
        log.info("cli_command %s", args.command)
        return args.func(workspace, cfg, args)
    except OmakureError as e:
        log.warning("cli_error %s: %s", args.command, e)
        print(f"error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
