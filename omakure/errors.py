from typing import Optional


class OmakureError(Exception):
    """Base class for every user-facing failure."""


# --- Schema structure / decoding ---
class SchemaError(OmakureError):
    pass


class BlockNotFound(SchemaError):
    def __init__(self) -> None:
        super().__init__("Schema block not found (missing OMAKURE_SCHEMA_START/OMAKURE_SCHEMA_END)")


class MissingCommentPrefix(SchemaError):
    def __init__(self, line: int) -> None:
        self.line = line
        super().__init__(f"Schema line {line} is missing a comment prefix")


class EmptyBlock(SchemaError):
    def __init__(self) -> None:
        super().__init__("Schema block is empty")


class JsonNotFound(SchemaError):
    def __init__(self) -> None:
        super().__init__("No valid schema JSON object found")


# --- Field validation ---
class FieldValidationError(OmakureError):
    pass


class ValueRequired(FieldValidationError):
    def __init__(self) -> None:
        super().__init__("Value required")


class InvalidChoice(FieldValidationError):
    def __init__(self, choices: str) -> None:
        self.choices = choices
        super().__init__(f"Value must be one of: {choices}")


class InvalidNumber(FieldValidationError):
    def __init__(self) -> None:
        super().__init__("Value must be a number")


class InvalidBoolean(FieldValidationError):
    def __init__(self) -> None:
        super().__init__("Value must be a boolean (true/false, yes/no, 1/0)")


# --- Execution ---
class ExecutionError(OmakureError):
    pass


class UnsupportedScriptType(ExecutionError):
    def __init__(self, path: Optional[str] = None) -> None:
        suffix = f": {path}" if path else ""
        super().__init__(f"Unsupported script type{suffix}")


class DependencyMissing(ExecutionError):
    pass


# --- Filesystem / environments ---
class WorkspaceIOError(OmakureError):
    pass


class EnvironmentConfigError(OmakureError):
    pass


class EnvironmentNotFound(EnvironmentConfigError):
    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Environment not found: {name}")


class WidgetError(OmakureError):
    pass
