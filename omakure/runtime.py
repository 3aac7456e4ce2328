import enum
import os
from pathlib import Path
from typing import List, Optional

from omakure.errors import UnsupportedScriptType


class ScriptKind(enum.Enum):
    BASH = "bash"
    POWERSHELL = "powershell"
    PYTHON = "python"


_KIND_BY_EXT = {
    "bash": ScriptKind.BASH,
    "sh": ScriptKind.BASH,
    "ps1": ScriptKind.POWERSHELL,
    "py": ScriptKind.PYTHON,
}


def script_extensions() -> List[str]:
    return list(_KIND_BY_EXT)


def script_kind(path: Path) -> Optional[ScriptKind]:
    ext = Path(path).suffix.lstrip(".").lower()
    return _KIND_BY_EXT.get(ext)


def powershell_program() -> str:
    return "powershell" if os.name == "nt" else "pwsh"


def python_program() -> str:
    return "python" if os.name == "nt" else "python3"


def command_for_script(script: Path) -> List[str]:
    kind = script_kind(script)
    if kind is None:
        raise UnsupportedScriptType(str(script))
    if kind is ScriptKind.BASH:
        return ["bash", str(script)]
    if kind is ScriptKind.POWERSHELL:
        return [powershell_program(), "-NoProfile", "-File", str(script)]
    return [python_program(), str(script)]
