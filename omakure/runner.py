import subprocess
import time
from pathlib import Path
from typing import List

from omakure.errors import ExecutionError, UnsupportedScriptType
from omakure.log_utils import get_logger
from omakure.ports import ScriptRunOutput, ScriptRunner
from omakure.runtime import command_for_script, script_kind
from omakure.system_checks import ensure_runtime

log = get_logger("runner")


class MultiScriptRunner(ScriptRunner):
    """
    Runs bash, PowerShell and Python scripts with captured output.
    Blocks until the child exits; there is no timeout and no cancellation.
    """

    def __init__(self, check_dependencies: bool = True) -> None:
        self.check_dependencies = check_dependencies

    def run(self, script: Path, args: List[str]) -> ScriptRunOutput:
        kind = script_kind(script)
        if kind is None:
            raise UnsupportedScriptType(str(script))
        if self.check_dependencies:
            ensure_runtime(kind)
        cmd = command_for_script(script) + list(args)
        t0 = time.monotonic()
        try:
            process = subprocess.Popen(cmd, stdout=subprocess.PIPE, stderr=subprocess.PIPE)
            stdout, stderr = process.communicate()
        except OSError as exc:
            raise ExecutionError(f"Failed to launch {script}: {exc}") from exc
        rc = process.returncode
        log.info("run script=%s rc=%s duration_s=%.2f", script, rc, time.monotonic() - t0)
        return ScriptRunOutput(
            stdout=stdout.decode(errors="replace") if stdout else "",
            stderr=stderr.decode(errors="replace") if stderr else "",
            exit_code=rc if rc is not None and rc >= 0 else None,
            success=rc == 0,
        )
