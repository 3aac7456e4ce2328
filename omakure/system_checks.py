import subprocess
from typing import Callable, Dict, List, Sequence

from omakure.errors import DependencyMissing
from omakure.runtime import ScriptKind, powershell_program, python_program


def ensure_command(program: str, args: Sequence[str], not_found_hint: str, failed_hint: str) -> None:
    """Raise DependencyMissing unless `program args...` runs and exits 0."""
    try:
        proc = subprocess.run([program, *args], stdout=subprocess.PIPE, stderr=subprocess.PIPE)
    except OSError as exc:
        raise DependencyMissing(f"{not_found_hint}: {exc}") from exc
    if proc.returncode != 0:
        message = proc.stderr.decode(errors="ignore").strip()
        raise DependencyMissing(f"{failed_hint}: {message}" if message else failed_hint)


def ensure_git_installed() -> None:
    ensure_command("git", ["--version"], "Git not found in PATH. Install Git and ensure it is in PATH",
                   "Git found, but `git --version` failed")


def ensure_bash_installed() -> None:
    ensure_command("bash", ["--version"], "Bash not found in PATH. Install bash and ensure it is in PATH",
                   "Bash found, but `bash --version` failed")


def ensure_jq_installed() -> None:
    ensure_command("jq", ["--version"], "jq not found in PATH. Install jq and ensure it is in PATH",
                   "jq found, but `jq --version` failed")


def ensure_powershell_installed() -> None:
    program = powershell_program()
    ensure_command(program, ["-NoProfile", "-Command", "$PSVersionTable.PSVersion"],
                   f"{program} not found in PATH. Install PowerShell and ensure it is in PATH",
                   f"{program} found, but PowerShell check failed")


def ensure_python_installed() -> None:
    program = python_program()
    ensure_command(program, ["--version"], f"{program} not found in PATH. Install Python and ensure it is in PATH",
                   f"{program} found, but `--version` failed")


REQUIRED_CHECKS: Dict[ScriptKind, List[Callable[[], None]]] = {
    ScriptKind.BASH: [ensure_git_installed, ensure_bash_installed, ensure_jq_installed],
    ScriptKind.POWERSHELL: [ensure_powershell_installed],
    ScriptKind.PYTHON: [ensure_python_installed],
}


def ensure_runtime(kind: ScriptKind) -> None:
    for check in REQUIRED_CHECKS.get(kind, []):
        check()
