from typing import List, Optional

import pydantic
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_pascal


_SCHEMA_CONFIG = ConfigDict(
    alias_generator=to_pascal,
    populate_by_name=True,
    strict=True,
    extra="ignore",
)


class Field(BaseModel):
    model_config = _SCHEMA_CONFIG

    name: str
    prompt: Optional[str] = None
    kind: str = pydantic.Field(alias="Type")
    order: int = pydantic.Field(ge=0)
    required: Optional[bool] = None
    default: Optional[str] = None
    choices: Optional[List[str]] = None
    arg: Optional[str] = None

    @property
    def is_required(self) -> bool:
        return bool(self.required)

    @property
    def arg_flag(self) -> str:
        return self.arg or f"--{self.name}"


class OutputField(BaseModel):
    model_config = _SCHEMA_CONFIG

    name: str
    kind: str = pydantic.Field(alias="Type")


class MatrixValue(BaseModel):
    model_config = _SCHEMA_CONFIG

    name: str
    values: List[str]


class MatrixSpec(BaseModel):
    model_config = _SCHEMA_CONFIG

    values: List[MatrixValue]


class CaseValue(BaseModel):
    model_config = _SCHEMA_CONFIG

    name: str
    value: str


class QueueCase(BaseModel):
    model_config = _SCHEMA_CONFIG

    name: Optional[str] = None
    values: List[CaseValue]


class QueueSpec(BaseModel):
    model_config = _SCHEMA_CONFIG

    matrix: Optional[MatrixSpec] = None
    cases: Optional[List[QueueCase]] = None


class Schema(BaseModel):
    """Input/output contract a script declares in its comment block."""

    model_config = _SCHEMA_CONFIG

    name: str
    description: Optional[str] = None
    tags: Optional[List[str]] = None
    fields: List[Field]
    outputs: Optional[List[OutputField]] = None
    queue: Optional[QueueSpec] = None

    def sorted_fields(self) -> List[Field]:
        return sorted(self.fields, key=lambda f: f.order)

    def with_sorted_fields(self) -> "Schema":
        return self.model_copy(update={"fields": self.sorted_fields()})


class HistoryEntry(BaseModel):
    """One recorded run; written once, never mutated."""

    model_config = ConfigDict(frozen=True)

    timestamp: int
    script: str
    args: List[str] = pydantic.Field(default_factory=list)
    success: bool
    exit_code: Optional[int] = None
    stdout: str = ""
    stderr: str = ""
    error: Optional[str] = None
