from typing import List, Optional, Sequence

from omakure.errors import InvalidBoolean, InvalidChoice, InvalidNumber, ValueRequired
from omakure.schemas import Field

_TRUE_WORDS = {"true", "t", "yes", "y", "1"}
_FALSE_WORDS = {"false", "f", "no", "n", "0"}


def parse_bool(text: str) -> Optional[bool]:
    lowered = text.strip().lower()
    if lowered in _TRUE_WORDS:
        return True
    if lowered in _FALSE_WORDS:
        return False
    return None


def _is_number(text: str) -> bool:
    # float() tolerates digit separators; plain decimal/exponent text only
    if "_" in text:
        return False
    try:
        float(text)
    except ValueError:
        return False
    return True


def normalize_input(field: Field, raw: str) -> Optional[str]:
    """
    Normalize one raw form value. None means the field is omitted from the
    argument vector; otherwise the caller emits [field.arg_flag, value].
    """
    value = (raw or "").strip()
    if not value:
        if field.default is not None:
            value = field.default
        elif field.is_required:
            raise ValueRequired()
        else:
            return None

    if field.choices is not None and value not in field.choices:
        raise InvalidChoice(", ".join(field.choices))

    kind = field.kind.lower()
    if kind == "number":
        if not _is_number(value):
            raise InvalidNumber()
        return value
    if kind in ("bool", "boolean"):
        parsed = parse_bool(value)
        if parsed is None:
            raise InvalidBoolean()
        return "true" if parsed else "false"
    return value


def build_args(fields: Sequence[Field], inputs: Sequence[str]) -> List[str]:
    """Validate every field in order; the first failure propagates unchanged."""
    args: List[str] = []
    for idx, field in enumerate(fields):
        raw = inputs[idx] if idx < len(inputs) else ""
        value = normalize_input(field, raw)
        if value is not None:
            args.extend([field.arg_flag, value])
    return args
