import os
import re
import time
from pathlib import Path
from typing import List, Optional, Sequence

from pydantic import ValidationError

from omakure.log_utils import get_logger
from omakure.ports import ScriptRunOutput
from omakure.schemas import HistoryEntry
from omakure.workspace import Workspace

SLUG_LIMIT = 64
_NON_ALNUM_RE = re.compile(r"[^A-Za-z0-9]+")

log = get_logger("history")


def timestamp_ms() -> int:
    return int(time.time() * 1000)


def safe_slug(text: str) -> str:
    slug = _NON_ALNUM_RE.sub("_", text).lower().strip("_")
    if not slug:
        slug = "run"
    return slug[:SLUG_LIMIT]


def history_file_name(entry: HistoryEntry, pid: Optional[int] = None) -> str:
    pid = os.getpid() if pid is None else pid
    return f"{entry.timestamp}-{pid}-{safe_slug(entry.script)}.json"


def _script_label(workspace: Workspace, script: Path) -> str:
    return workspace.display_path(script)


def success_entry(workspace: Workspace, script: Path, args: Sequence[str], output: ScriptRunOutput) -> HistoryEntry:
    return HistoryEntry(
        timestamp=timestamp_ms(),
        script=_script_label(workspace, script),
        args=list(args),
        success=output.success,
        exit_code=output.exit_code,
        stdout=output.stdout,
        stderr=output.stderr,
        error=None,
    )


def error_entry(workspace: Workspace, script: Path, args: Sequence[str], message: str) -> HistoryEntry:
    return HistoryEntry(
        timestamp=timestamp_ms(),
        script=_script_label(workspace, script),
        args=list(args),
        success=False,
        exit_code=None,
        error=message,
    )


class HistoryStore:
    """File-per-run history under the workspace history directory."""

    def __init__(self, history_dir: Path) -> None:
        self.history_dir = Path(history_dir)

    def record(self, entry: HistoryEntry) -> Path:
        self.history_dir.mkdir(parents=True, exist_ok=True)
        path = self.history_dir / history_file_name(entry)
        path.write_text(entry.model_dump_json(indent=2), encoding="utf-8")
        return path

    def load_all(self) -> List[HistoryEntry]:
        if not self.history_dir.is_dir():
            return []
        entries: List[HistoryEntry] = []
        for path in self.history_dir.iterdir():
            if path.suffix != ".json" or not path.is_file():
                continue
            try:
                entries.append(HistoryEntry.model_validate_json(path.read_bytes()))
            except (OSError, ValidationError):
                log.info("history skip unreadable file=%s", path.name)
                continue
        entries.sort(key=lambda e: e.timestamp, reverse=True)
        return entries


def format_output(entry: HistoryEntry) -> str:
    if entry.error is not None:
        return entry.error.strip()
    parts = []
    if entry.stdout.strip():
        parts.append("STDOUT:\n" + entry.stdout.rstrip())
    if entry.stderr.strip():
        parts.append("STDERR:\n" + entry.stderr.rstrip())
    return "\n\n".join(parts)


def _civil_from_days(days: int):
    # Howard Hinnant's days -> (y, m, d), proleptic Gregorian
    z = days + 719_468
    era = (z if z >= 0 else z - 146_096) // 146_097
    doe = z - era * 146_097
    yoe = (doe - doe // 1_460 + doe // 36_524 - doe // 146_096) // 365
    y = yoe + era * 400
    doy = doe - (365 * yoe + yoe // 4 - yoe // 100)
    mp = (5 * doy + 2) // 153
    day = doy - (153 * mp + 2) // 5 + 1
    month = mp + 3 if mp < 10 else mp - 9
    year = y + 1 if month <= 2 else y
    return year, month, day


def format_timestamp(ms: int) -> str:
    ms = max(int(ms), 0)
    seconds = ms // 1000
    days, seconds_of_day = divmod(seconds, 86_400)
    hour = seconds_of_day // 3_600
    minute = (seconds_of_day % 3_600) // 60
    year, month, day = _civil_from_days(days)
    return f"{year:04d}-{month:02d}-{day:02d} {hour:02d}:{minute:02d}"
