from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

import yaml

from omakure.errors import WidgetError

WIDGET_FILE = "index.yaml"


@dataclass
class WidgetData:
    title: Optional[str] = None
    lines: List[str] = field(default_factory=list)


def load_widget(directory: Path) -> Optional[WidgetData]:
    """
    Read `index.yaml` from a script directory. Returns None when the directory has
    no widget file; a file that cannot be read or has the wrong shape raises WidgetError.
    """
    path = Path(directory) / WIDGET_FILE
    if not path.is_file():
        return None
    try:
        with path.open("r", encoding="utf-8") as f:
            raw = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as exc:
        raise WidgetError(f"{WIDGET_FILE}: {exc}") from exc
    if raw is None:
        return WidgetData()
    if not isinstance(raw, dict):
        raise WidgetError(f"{WIDGET_FILE}: expected a mapping with 'title' and 'lines'")
    title = raw.get("title")
    if title is not None and not isinstance(title, str):
        raise WidgetError(f"{WIDGET_FILE}: 'title' must be a string")
    lines = raw.get("lines") or []
    if isinstance(lines, str):
        lines = lines.splitlines()
    if not isinstance(lines, list):
        raise WidgetError(f"{WIDGET_FILE}: 'lines' must be a list")
    return WidgetData(title=title, lines=[str(line) for line in lines])
