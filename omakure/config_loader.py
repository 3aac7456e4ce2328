import copy
from pathlib import Path
from typing import Any, Dict

import yaml


DEFAULT_CONFIG: Dict[str, Any] = {
    "tick_ms": 200,
    "history_limit": 0,  # 0 = keep every loaded entry in the history screen
    "log_stdout": False,
    "search": {"enabled": True},
}


def _merge(base: Dict[str, Any], loaded: Dict[str, Any]) -> Dict[str, Any]:
    out = copy.deepcopy(base)
    for key, value in loaded.items():
        if isinstance(value, dict) and isinstance(out.get(key), dict):
            out[key] = _merge(out[key], value)
        else:
            out[key] = value
    return out


def load_config(path: Path = Path("omakure.yaml")) -> Dict[str, Any]:
    if not path.exists():
        return copy.deepcopy(DEFAULT_CONFIG)
    try:
        with path.open("r", encoding="utf-8") as f:
            loaded = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError):
        return copy.deepcopy(DEFAULT_CONFIG)
    if not isinstance(loaded, dict):
        return copy.deepcopy(DEFAULT_CONFIG)
    return _merge(DEFAULT_CONFIG, loaded)


def tick_seconds(cfg: Dict[str, Any]) -> float:
    try:
        ms = int(cfg.get("tick_ms", DEFAULT_CONFIG["tick_ms"]))
    except (TypeError, ValueError):
        ms = DEFAULT_CONFIG["tick_ms"]
    return max(ms, 10) / 1000.0
