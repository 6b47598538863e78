"""Capability bindings exposed to extraction routines.

The document is a BeautifulSoup parse of the snapshot HTML. Routines never
see bs4 objects: every node is handed out wrapped in ``Element``, whose only
state lives in an underscore attribute the load-time policy makes
unreachable.
"""

from __future__ import annotations

import logging
import operator
from typing import Any, Callable

from bs4 import BeautifulSoup
from bs4.element import Tag

routine_logger = logging.getLogger("agentic_scraper.sandbox.routine")


class StepBudgetExceeded(BaseException):
    """Raised inside a routine when it runs out of steps; `except Exception` cannot stop it."""


class Element:
    """Read-only view of one document node."""

    __slots__ = ("_tag",)

    def __init__(self, tag: Tag) -> None:
        self._tag = tag

    def __repr__(self) -> str:
        return f"<Element {self._tag.name}>"

    @property
    def tag_name(self) -> str:
        return self._tag.name or ""

    @property
    def text(self) -> str:
        return _normalized_text(self._tag)

    @property
    def inner_html(self) -> str:
        return self._tag.decode_contents()

    @property
    def outer_html(self) -> str:
        return str(self._tag)

    @property
    def attributes(self) -> dict[str, str]:
        return {name: _attribute_text(value) for name, value in self._tag.attrs.items()}

    def attr(self, name: str, default: str = "") -> str:
        value = self._tag.get(name)
        return default if value is None else _attribute_text(value)

    def select(self, selector: str) -> Element | None:
        found = self._tag.select_one(selector)
        return Element(found) if found is not None else None

    def select_all(self, selector: str) -> list[Element]:
        return [Element(found) for found in self._tag.select(selector)]

    def parent(self) -> Element | None:
        parent = self._tag.parent
        return Element(parent) if isinstance(parent, Tag) else None

    def children(self) -> list[Element]:
        return [Element(child) for child in self._tag.children if isinstance(child, Tag)]


def _normalized_text(tag: Tag) -> str:
    return " ".join(tag.get_text(" ").split())


def _attribute_text(value: Any) -> str:
    # bs4 returns multi-valued attributes such as class as lists
    if isinstance(value, (list, tuple)):
        return " ".join(value)
    return str(value)


class StepBudget:
    """Counts loop iterations and function entries of one execution."""

    def __init__(self, max_steps: int) -> None:
        self.max_steps = max_steps
        self.used = 0

    def step(self) -> bool:
        self.used += 1
        if self.used > self.max_steps:
            raise StepBudgetExceeded(f"Routine exceeded its budget of {self.max_steps} steps")
        return True

    def bounded_range(self, *args: int) -> range:
        span = range(*args)
        if len(span) > self.max_steps:
            raise StepBudgetExceeded(
                f"range of {len(span)} items exceeds the budget of {self.max_steps} steps"
            )
        return span


_OPERATIONS: dict[str, Callable[[Any, Any], Any]] = {
    "add": operator.add,
    "mul": operator.mul,
    "pow": operator.pow,
    "iadd": operator.iadd,
    "imul": operator.imul,
    "ipow": operator.ipow,
}

_SIZED = (str, bytes, list, tuple)


class ArithmeticGuard:
    """Checks ``+``, ``*`` and ``**`` before they run.

    A big-integer power or a sequence repetition runs inside one bytecode,
    where neither the step budget nor a caller deadline can stop it.
    Oversized results raise OverflowError before they are computed.
    """

    def __init__(self, max_sequence_length: int, max_int_bits: int) -> None:
        self.max_sequence_length = max_sequence_length
        self.max_int_bits = max_int_bits

    def apply(self, operation: str, left: Any, right: Any) -> Any:
        kind = operation[-3:]
        if kind == "pow":
            self._check_power(left, right)
        elif kind == "mul":
            self._check_product(left, right)
        else:
            self._check_sum(left, right)
        return _OPERATIONS[operation](left, right)

    def _check_power(self, base: Any, exponent: Any) -> None:
        if not (isinstance(base, int) and isinstance(exponent, int)):
            return
        if exponent > 0 and abs(base) > 1 and base.bit_length() * exponent > self.max_int_bits:
            raise OverflowError(f"result of ** would exceed {self.max_int_bits} bits")

    def _check_product(self, left: Any, right: Any) -> None:
        if isinstance(left, int) and isinstance(right, int):
            if left.bit_length() + right.bit_length() > self.max_int_bits:
                raise OverflowError(f"result of * would exceed {self.max_int_bits} bits")
            return
        if isinstance(left, int):
            left, right = right, left
        if isinstance(left, _SIZED) and isinstance(right, int):
            if len(left) * right > self.max_sequence_length:
                raise OverflowError(
                    f"result of * would exceed {self.max_sequence_length} items"
                )

    def _check_sum(self, left: Any, right: Any) -> None:
        if isinstance(left, _SIZED) and isinstance(right, _SIZED):
            if len(left) + len(right) > self.max_sequence_length:
                raise OverflowError(
                    f"result of + would exceed {self.max_sequence_length} items"
                )


class RoutineLog:
    """Restricted logging sink: forwards to logging and keeps a capped copy."""

    def __init__(self, max_lines: int) -> None:
        self._max_lines = max_lines
        self.lines: list[str] = []

    def write(self, *args: Any) -> None:
        line = " ".join(str(arg) for arg in args)
        routine_logger.info("[routine] %s", line)
        if len(self.lines) < self._max_lines:
            self.lines.append(line)


def _pure_builtins() -> dict[str, Any]:
    return {
        "abs": abs,
        "all": all,
        "any": any,
        "bool": bool,
        "dict": dict,
        "enumerate": enumerate,
        "filter": filter,
        "float": float,
        "int": int,
        "isinstance": isinstance,
        "len": len,
        "list": list,
        "map": map,
        "max": max,
        "min": min,
        "reversed": reversed,
        "round": round,
        "set": set,
        "sorted": sorted,
        "str": str,
        "sum": sum,
        "tuple": tuple,
        "zip": zip,
        "None": None,
        "True": True,
        "False": False,
        "Exception": Exception,
        "ValueError": ValueError,
        "KeyError": KeyError,
        "IndexError": IndexError,
        "TypeError": TypeError,
        "AttributeError": AttributeError,
    }


def build_namespace(
    html: str,
    budget: StepBudget,
    guard: ArithmeticGuard,
    log: RoutineLog,
    step_hook: str,
    arith_hook: str,
) -> dict[str, Any]:
    """Build the complete global namespace a routine runs in."""
    soup = BeautifulSoup(html, "html.parser")
    document = Element(soup)

    def select(selector: str) -> Element | None:
        return document.select(selector)

    def select_all(selector: str) -> list[Element]:
        return document.select_all(selector)

    def get_text(element: Element | None) -> str:
        return element.text if element is not None else ""

    def get_attribute(element: Element | None, name: str) -> str:
        return element.attr(name) if element is not None else ""

    def get_inner_html(element: Element | None) -> str:
        return element.inner_html if element is not None else ""

    builtins = _pure_builtins()
    builtins["range"] = budget.bounded_range
    builtins["print"] = log.write

    return {
        "__builtins__": builtins,
        step_hook: budget.step,
        arith_hook: guard.apply,
        "document": document,
        "select": select,
        "select_all": select_all,
        "get_text": get_text,
        "get_attribute": get_attribute,
        "get_inner_html": get_inner_html,
        "log": log.write,
    }


def to_plain(value: Any) -> Any:
    """Convert a routine's return value into plain data for validation."""
    if isinstance(value, Element):
        return value.text
    if isinstance(value, dict):
        return {str(key): to_plain(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [to_plain(item) for item in value]
    return value
