"""Schema Validator — compile a schema description, validate values, format failures.

Compilation parses the JSON description into the IR of
``agentic_scraper.schema.ir`` and builds pydantic types from it. Nothing in
a description is ever evaluated: the worst a hostile description can do is
fail to compile.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Annotated, Any, Literal, Optional

from pydantic import (
    AfterValidator,
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    PlainValidator,
    StringConstraints,
    TypeAdapter,
    ValidationError,
    create_model,
)
from pydantic_core import PydanticCustomError

from agentic_scraper.schema.ir import (
    AnyNode,
    ArrayNode,
    BooleanNode,
    IntegerNode,
    LiteralNode,
    NumberNode,
    ObjectNode,
    SchemaNode,
    StringNode,
    UnionNode,
)

ROOT_PATH_LABEL = "<root>"

# pydantic error types whose default message is replaced with a shorter one
_MESSAGE_OVERRIDES = {
    "missing": "required",
    "extra_forbidden": "unexpected field",
}

_EXTRA_MODES = {"strip": "ignore", "allow": "allow", "forbid": "forbid"}

_IR_ADAPTER: TypeAdapter[Any] = TypeAdapter(SchemaNode)


class SchemaCompileError(Exception):
    """Raised when a schema description does not denote a valid schema."""


@dataclass(frozen=True)
class SchemaIssue:
    """One violated constraint, located by its path from the value's root."""

    path: tuple[str | int, ...]
    message: str

    def render(self) -> str:
        location = ".".join(str(part) for part in self.path) or ROOT_PATH_LABEL
        return f"{location}: {self.message}"


@dataclass(frozen=True)
class ValidationOutcome:
    """Valid(value) when ``valid`` is true, otherwise Invalid(issues)."""

    valid: bool
    value: Any = None
    issues: tuple[SchemaIssue, ...] = field(default_factory=tuple)


class CompiledSchema:
    """An executable validator built from one schema description."""

    def __init__(self, root: Any, description: str) -> None:
        self._root = root
        self._description = description
        annotation = _build(root)
        self._adapter: TypeAdapter[Any] = TypeAdapter(annotation)

    @property
    def root(self) -> Any:
        """The parsed IR tree."""
        return self._root

    @property
    def description(self) -> str:
        return self._description

    def validate(self, value: Any) -> ValidationOutcome:
        """Validate ``value`` without mutating it.

        On success the returned value is a fresh, normalized copy: coerced
        primitives, unknown keys stripped (unless allowed), absent optional
        fields left out.
        """
        try:
            validated = self._adapter.validate_python(value)
        except ValidationError as exc:
            return ValidationOutcome(valid=False, issues=_issues_from(exc))
        normalized = self._adapter.dump_python(validated, by_alias=True, exclude_unset=True)
        return ValidationOutcome(valid=True, value=normalized)


def compile_schema(description: str) -> CompiledSchema:
    """Compile a serialized schema description into a CompiledSchema.

    Raises:
        SchemaCompileError: the text is not JSON or does not describe a schema.
    """
    try:
        root = _IR_ADAPTER.validate_json(description)
    except ValidationError as exc:
        details = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or ROOT_PATH_LABEL}: {err['msg']}"
            for err in exc.errors(include_url=False)[:5]
        )
        raise SchemaCompileError(f"Invalid schema description: {details}") from exc
    return CompiledSchema(root, description)


def can_compile(description: str) -> bool:
    try:
        compile_schema(description)
    except SchemaCompileError:
        return False
    return True


def validate(value: Any, schema: CompiledSchema) -> ValidationOutcome:
    return schema.validate(value)


def format_issues(issues: tuple[SchemaIssue, ...] | list[SchemaIssue]) -> str:
    """Render issues as ``<dot-joined path>: <message>`` lines, in validation order."""
    return "\n".join(issue.render() for issue in issues)


def _issues_from(exc: ValidationError) -> tuple[SchemaIssue, ...]:
    issues = []
    for err in exc.errors(include_url=False):
        message = _MESSAGE_OVERRIDES.get(err["type"], err["msg"])
        issues.append(SchemaIssue(path=tuple(err["loc"]), message=message))
    return tuple(issues)


# --- IR -> pydantic types ---


def _build(node: Any) -> Any:
    annotation = _build_base(node)
    if node.nullable:
        annotation = Optional[annotation]
    return annotation


def _build_base(node: Any) -> Any:
    if isinstance(node, StringNode):
        return _string_type(node)
    if isinstance(node, NumberNode):
        return Annotated[
            float, Field(ge=node.minimum, le=node.maximum, strict=not node.coerce)
        ]
    if isinstance(node, IntegerNode):
        return Annotated[int, Field(ge=node.minimum, le=node.maximum, strict=not node.coerce)]
    if isinstance(node, BooleanNode):
        return Annotated[bool, Field(strict=not node.coerce)]
    if isinstance(node, LiteralNode):
        return Literal[tuple(node.values)]
    if isinstance(node, AnyNode):
        return Any
    if isinstance(node, ArrayNode):
        return Annotated[
            list[_build(node.items)],
            Field(min_length=node.min_items, max_length=node.max_items),
        ]
    if isinstance(node, ObjectNode):
        return _object_model(node)
    if isinstance(node, UnionNode):
        return _union_type(node)
    raise SchemaCompileError(f"Unsupported schema node: {type(node).__name__}")


def _string_type(node: StringNode) -> Any:
    metadata: list[Any] = [
        StringConstraints(
            strict=True,
            strip_whitespace=node.trim,
            min_length=node.min_length,
            max_length=node.max_length,
        )
    ]
    if node.pattern is not None:
        metadata.append(AfterValidator(_pattern_check(node.pattern)))
    if node.coerce:
        metadata.append(BeforeValidator(_number_to_text))
    return Annotated[(str, *metadata)]


def _pattern_check(pattern: str):
    compiled = re.compile(pattern)

    def check(value: str) -> str:
        if compiled.search(value) is None:
            raise PydanticCustomError(
                "string_pattern_mismatch",
                "should match pattern '{pattern}'",
                {"pattern": pattern},
            )
        return value

    return check


def _number_to_text(value: Any) -> Any:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return value


def _object_model(node: ObjectNode) -> type[BaseModel]:
    fields: dict[str, Any] = {}
    # JSON keys travel as aliases; attribute names are positional.
    for position, (key, child) in enumerate(node.properties.items()):
        default = None if child.optional else ...
        fields[f"field_{position}"] = (_build(child), Field(default, alias=key))
    return create_model(
        "Object",
        __config__=ConfigDict(extra=_EXTRA_MODES[node.additional]),
        **fields,
    )


def _union_type(node: UnionNode) -> Any:
    branches = [TypeAdapter(_build(child)) for child in node.any_of]

    def pick_branch(value: Any) -> Any:
        for adapter in branches:
            try:
                validated = adapter.validate_python(value)
            except ValidationError:
                continue
            return adapter.dump_python(validated, by_alias=True, exclude_unset=True)
        raise PydanticCustomError("union_mismatch", "did not match any allowed variant")

    return Annotated[Any, PlainValidator(pick_branch)]
