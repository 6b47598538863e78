"""Load-time policy for extraction routines.

A routine is the body of a function: it may ``return`` the extracted value
directly. The body is parsed, checked against a whitelist of syntax, and
instrumented with step metering before it is compiled. Anything outside the
whitelist is rejected before execution, never patched up afterwards.
"""

from __future__ import annotations

import ast
import copy
import textwrap

ROUTINE_FUNCTION = "__routine__"
STEP_HOOK = "__step__"
ARITH_HOOK = "__arith__"

# Operators whose result can grow without bound in a single bytecode.
METERED_OPERATORS: dict[type[ast.operator], str] = {
    ast.Add: "add",
    ast.Mult: "mul",
    ast.Pow: "pow",
}
IN_PLACE_OPERATORS: dict[type[ast.operator], str] = {
    ast.Add: "iadd",
    ast.Mult: "imul",
    ast.Pow: "ipow",
}

ALLOWED_NODES: frozenset[type[ast.AST]] = frozenset(
    {
        # statements
        ast.Expr,
        ast.Assign,
        ast.AugAssign,
        ast.AnnAssign,
        ast.Return,
        ast.If,
        ast.For,
        ast.While,
        ast.Break,
        ast.Continue,
        ast.Pass,
        ast.Try,
        ast.ExceptHandler,
        ast.Raise,
        ast.FunctionDef,
        ast.Delete,
        # expressions
        ast.BoolOp,
        ast.BinOp,
        ast.UnaryOp,
        ast.Compare,
        ast.IfExp,
        ast.Call,
        ast.keyword,
        ast.Attribute,
        ast.Subscript,
        ast.Slice,
        ast.Starred,
        ast.Name,
        ast.Constant,
        ast.List,
        ast.Tuple,
        ast.Dict,
        ast.Set,
        ast.ListComp,
        ast.SetComp,
        ast.DictComp,
        ast.GeneratorExp,
        ast.comprehension,
        ast.Lambda,
        ast.JoinedStr,
        ast.FormattedValue,
        ast.arguments,
        ast.arg,
        # contexts and operators
        ast.Load,
        ast.Store,
        ast.Del,
        ast.And,
        ast.Or,
        ast.Add,
        ast.Sub,
        ast.Mult,
        ast.Div,
        ast.FloorDiv,
        ast.Mod,
        ast.Pow,
        ast.BitAnd,
        ast.BitOr,
        ast.BitXor,
        ast.Not,
        ast.USub,
        ast.UAdd,
        ast.Invert,
        ast.Eq,
        ast.NotEq,
        ast.Lt,
        ast.LtE,
        ast.Gt,
        ast.GtE,
        ast.Is,
        ast.IsNot,
        ast.In,
        ast.NotIn,
    }
)

# Names that have no binding in the sandbox; rejecting them up front gives
# the generator a precise diagnostic instead of a NameError at run time.
FORBIDDEN_NAMES = frozenset(
    {
        "eval",
        "exec",
        "compile",
        "open",
        "input",
        "globals",
        "locals",
        "vars",
        "dir",
        "getattr",
        "setattr",
        "delattr",
        "hasattr",
        "type",
        "object",
        "super",
        "memoryview",
        "breakpoint",
        "help",
        "exit",
        "quit",
        "classmethod",
        "staticmethod",
        "property",
    }
)

# str.format can reach attributes through its mini-language; the padding
# methods build strings of any width in one call; the rest lead from
# generators and exceptions to interpreter frames.
FORBIDDEN_ATTRIBUTES = frozenset(
    {
        "format",
        "format_map",
        "ljust",
        "rjust",
        "center",
        "zfill",
        "expandtabs",
        "gi_frame",
        "gi_code",
        "cr_frame",
        "ag_frame",
        "tb_frame",
        "tb_next",
        "f_back",
        "f_globals",
        "f_locals",
        "f_builtins",
        "f_code",
        "with_traceback",
    }
)


class RoutinePolicyError(Exception):
    """Raised when a routine falls outside the supported grammar."""

    def __init__(self, message: str, lineno: int | None = None) -> None:
        self.lineno = lineno
        where = f" (line {lineno})" if lineno else ""
        super().__init__(f"{message}{where}")


def parse_routine(source: str) -> ast.Module:
    """Parse a routine body into a module holding a single wrapper function.

    Raises:
        RoutinePolicyError: the body is not valid Python.
    """
    if not source or not source.strip():
        raise RoutinePolicyError("Routine is empty")
    wrapped = f"def {ROUTINE_FUNCTION}():\n" + textwrap.indent(
        textwrap.dedent(source), "    "
    )
    try:
        return ast.parse(wrapped, filename="<routine>", mode="exec")
    except SyntaxError as exc:
        # line 1 is the wrapper
        lineno = exc.lineno - 1 if exc.lineno else None
        raise RoutinePolicyError(f"Syntax error: {exc.msg}", lineno) from exc


def routine_body(module: ast.Module) -> list[ast.stmt]:
    return module.body[0].body  # type: ignore[attr-defined]


def check_routine(module: ast.Module) -> None:
    """Reject every construct outside the whitelist.

    Raises:
        RoutinePolicyError: with the first offending construct.
    """
    for statement in routine_body(module):
        for node in ast.walk(statement):
            _check_node(node)


def _check_node(node: ast.AST) -> None:
    lineno = _user_line(node)
    if type(node) not in ALLOWED_NODES:
        raise RoutinePolicyError(f"'{type(node).__name__}' is not allowed in routines", lineno)

    if isinstance(node, ast.Name):
        _check_identifier(node.id, lineno)
        if node.id in FORBIDDEN_NAMES:
            raise RoutinePolicyError(f"'{node.id}' is not available in routines", lineno)
    elif isinstance(node, ast.Attribute):
        _check_identifier(node.attr, lineno)
        if node.attr in FORBIDDEN_ATTRIBUTES:
            raise RoutinePolicyError(f"Attribute '{node.attr}' is not allowed", lineno)
    elif isinstance(node, ast.FunctionDef):
        _check_identifier(node.name, lineno)
        if node.decorator_list:
            raise RoutinePolicyError("Decorators are not allowed", lineno)
    elif isinstance(node, ast.arg):
        _check_identifier(node.arg, lineno)
    elif isinstance(node, ast.keyword) and node.arg is not None:
        _check_identifier(node.arg, lineno)
    elif isinstance(node, ast.ExceptHandler) and node.name:
        _check_identifier(node.name, lineno)


def _check_identifier(name: str, lineno: int | None) -> None:
    if name.startswith("_"):
        raise RoutinePolicyError(f"Identifier '{name}' is not allowed (leading underscore)", lineno)


def _user_line(node: ast.AST) -> int | None:
    lineno = getattr(node, "lineno", None)
    return lineno - 1 if lineno else None


class _StepInstrumenter(ast.NodeTransformer):
    """Meter loops, function bodies and comprehensions; route + * ** through the size guard."""

    def _call(self) -> ast.Call:
        return ast.Call(func=ast.Name(id=STEP_HOOK, ctx=ast.Load()), args=[], keywords=[])

    def _arith(self, operation: str, left: ast.expr, right: ast.expr) -> ast.Call:
        return ast.Call(
            func=ast.Name(id=ARITH_HOOK, ctx=ast.Load()),
            args=[ast.Constant(value=operation), left, right],
            keywords=[],
        )

    def visit_BinOp(self, node: ast.BinOp) -> ast.AST:
        self.generic_visit(node)
        operation = METERED_OPERATORS.get(type(node.op))
        if operation is None:
            return node
        return ast.copy_location(self._arith(operation, node.left, node.right), node)

    def visit_AugAssign(self, node: ast.AugAssign) -> ast.AST:
        self.generic_visit(node)
        operation = IN_PLACE_OPERATORS.get(type(node.op))
        if operation is None:
            return node
        # x op= y  ->  x = __arith__(op, x, y); subscript targets are evaluated twice
        current = copy.deepcopy(node.target)
        current.ctx = ast.Load()
        assign = ast.Assign(
            targets=[node.target], value=self._arith(operation, current, node.value)
        )
        return ast.copy_location(assign, node)

    def _instrument(self, node: ast.AST) -> ast.AST:
        self.generic_visit(node)
        node.body.insert(0, ast.Expr(value=self._call()))  # type: ignore[attr-defined]
        return node

    visit_For = _instrument
    visit_While = _instrument
    visit_FunctionDef = _instrument

    def visit_comprehension(self, node: ast.comprehension) -> ast.AST:
        # the hook returns True, so as a leading condition it only counts
        self.generic_visit(node)
        node.ifs.insert(0, self._call())
        return node


def instrument_routine(module: ast.Module) -> ast.Module:
    """Return ``module`` with step and size metering added; call only after check_routine."""
    instrumented = _StepInstrumenter().visit(module)
    return ast.fix_missing_locations(instrumented)
