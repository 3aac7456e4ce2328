import json
from pathlib import Path
from typing import Iterable, List, Optional, Sequence

from pydantic import ValidationError

from omakure.errors import BlockNotFound, EmptyBlock, JsonNotFound, MissingCommentPrefix
from omakure.schemas import Schema

SCHEMA_START = "OMAKURE_SCHEMA_START"
SCHEMA_END = "OMAKURE_SCHEMA_END"

_HASH_PREFIXES = ("#",)
_DEFAULT_PREFIXES = ("#", ";")
_PREFIXES_BY_SUFFIX = {
    ".sh": _HASH_PREFIXES,
    ".bash": _HASH_PREFIXES,
    ".py": _HASH_PREFIXES,
    ".ps1": _HASH_PREFIXES,
}

_DECODER = json.JSONDecoder()


def comment_prefixes_for(path: Path) -> Sequence[str]:
    return _PREFIXES_BY_SUFFIX.get(path.suffix.lower(), _DEFAULT_PREFIXES)


def _source_lines(text: str) -> List[str]:
    lines = text.split("\n")
    if lines and lines[-1] == "":
        lines.pop()
    return [ln[:-1] if ln.endswith("\r") else ln for ln in lines]


def strip_comment_prefix(line: str, prefixes: Iterable[str]) -> Optional[str]:
    """Return the commented text of `line` (one following space removed), or None."""
    trimmed = line.lstrip()
    for prefix in prefixes:
        if trimmed.startswith(prefix):
            remainder = trimmed[len(prefix):]
            if remainder.startswith(" "):
                remainder = remainder[1:]
            return remainder
    return None


def extract_schema_block(text: str, prefixes: Iterable[str]) -> str:
    """
    Pull the text between the schema markers out of a commented script.
    Raises BlockNotFound, MissingCommentPrefix(line) or EmptyBlock.
    """
    prefixes = tuple(prefixes)
    in_block = False
    buffer: List[str] = []
    for index, line in enumerate(_source_lines(text)):
        commented = strip_comment_prefix(line, prefixes)
        if commented is None:
            if not in_block:
                continue
            if not line.strip():
                continue
            raise MissingCommentPrefix(index + 1)
        marker = commented.strip()
        if not in_block:
            if marker == SCHEMA_START:
                in_block = True
            continue
        if marker == SCHEMA_END:
            block = "\n".join(buffer)
            if not block.strip():
                raise EmptyBlock()
            return block
        buffer.append(commented)
    raise BlockNotFound()


def parse_schema(block: str) -> Schema:
    """Decode the first '{' offset that yields a complete Schema object; prose around it is ignored."""
    start = block.find("{")
    while start != -1:
        try:
            obj, end = _DECODER.raw_decode(block, start)
        except ValueError:
            obj, end = None, start
        if isinstance(obj, dict):
            try:
                return Schema.model_validate_json(block[start:end])
            except ValidationError:
                pass
        start = block.find("{", start + 1)
    raise JsonNotFound()


def read_schema_from_text(text: str, path: Path) -> Schema:
    return parse_schema(extract_schema_block(text, comment_prefixes_for(path)))
