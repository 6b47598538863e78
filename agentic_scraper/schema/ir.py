"""Schema description language — a serializable tree of typed constraints.

A schema description is JSON data, never code. Each node is tagged by
``type`` and parsed into one of the models below. Compilation
(``agentic_scraper.schema.validator``) turns the tree into pydantic types.

Example::

    {
      "type": "object",
      "properties": {
        "title": {"type": "string", "min_length": 1},
        "price": {"type": "number", "coerce": true},
        "tags": {"type": "array", "items": {"type": "string"}, "optional": true}
      }
    }
"""

from __future__ import annotations

import re
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class _Node(BaseModel):
    """Modifiers shared by every node."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    optional: bool = False  # may be absent from its parent object
    nullable: bool = False  # may be null
    description: str = ""


class StringNode(_Node):
    type: Literal["string"]
    min_length: int | None = Field(default=None, ge=0)
    max_length: int | None = Field(default=None, ge=0)
    pattern: str | None = None
    trim: bool = False
    coerce: bool = False  # numbers become strings

    @field_validator("pattern")
    @classmethod
    def _pattern_compiles(cls, value: str | None) -> str | None:
        if value is not None:
            try:
                re.compile(value)
            except re.error as exc:
                raise ValueError(f"invalid pattern {value!r}: {exc}") from exc
        return value

    @model_validator(mode="after")
    def _length_bounds(self) -> StringNode:
        if (
            self.min_length is not None
            and self.max_length is not None
            and self.min_length > self.max_length
        ):
            raise ValueError("min_length cannot exceed max_length")
        return self


class NumberNode(_Node):
    type: Literal["number"]
    minimum: float | None = None
    maximum: float | None = None
    coerce: bool = False  # numeric strings become numbers

    @model_validator(mode="after")
    def _bounds(self) -> NumberNode:
        if self.minimum is not None and self.maximum is not None and self.minimum > self.maximum:
            raise ValueError("minimum cannot exceed maximum")
        return self


class IntegerNode(_Node):
    type: Literal["integer"]
    minimum: int | None = None
    maximum: int | None = None
    coerce: bool = False

    @model_validator(mode="after")
    def _bounds(self) -> IntegerNode:
        if self.minimum is not None and self.maximum is not None and self.minimum > self.maximum:
            raise ValueError("minimum cannot exceed maximum")
        return self


class BooleanNode(_Node):
    type: Literal["boolean"]
    coerce: bool = False  # "true"/"yes"/1 become True


class LiteralNode(_Node):
    type: Literal["literal"]
    values: list[str | int | float | bool] = Field(min_length=1)


class AnyNode(_Node):
    type: Literal["any"]


class ArrayNode(_Node):
    type: Literal["array"]
    items: SchemaNode
    min_items: int | None = Field(default=None, ge=0)
    max_items: int | None = Field(default=None, ge=0)


class ObjectNode(_Node):
    type: Literal["object"]
    properties: dict[str, SchemaNode] = Field(default_factory=dict)
    # strip: drop unknown keys, allow: keep them, forbid: report them
    additional: Literal["strip", "allow", "forbid"] = "strip"


class UnionNode(_Node):
    type: Literal["union"]
    any_of: list[SchemaNode] = Field(min_length=2)


SchemaNode = Annotated[
    Union[
        StringNode,
        NumberNode,
        IntegerNode,
        BooleanNode,
        LiteralNode,
        AnyNode,
        ArrayNode,
        ObjectNode,
        UnionNode,
    ],
    Field(discriminator="type"),
]

ArrayNode.model_rebuild()
ObjectNode.model_rebuild()
UnionNode.model_rebuild()
