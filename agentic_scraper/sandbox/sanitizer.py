"""Advisory routine sanitizer.

Rewrites obviously dangerous constructs (dynamic evaluation, imports,
network, timer and process access) into inert ``None`` before the routine is
loaded. This only reduces noise in generated code; the load-time policy in
``agentic_scraper.sandbox.policy`` is what actually keeps routines contained.
"""

from __future__ import annotations

import ast
from dataclasses import dataclass, field

from agentic_scraper.sandbox.policy import (
    RoutinePolicyError,
    parse_routine,
    routine_body,
)

DANGEROUS_CALLS = frozenset(
    {
        "eval",
        "exec",
        "compile",
        "__import__",
        "open",
        "input",
        "breakpoint",
        "globals",
        "locals",
        "vars",
        "getattr",
        "setattr",
        "delattr",
    }
)

# Calls rooted at these names are network, timer or process access.
DANGEROUS_ROOTS = frozenset(
    {
        "os",
        "sys",
        "subprocess",
        "socket",
        "shutil",
        "requests",
        "httpx",
        "urllib",
        "aiohttp",
        "asyncio",
        "threading",
        "multiprocessing",
        "signal",
        "time",
        "importlib",
        "builtins",
    }
)


@dataclass
class SanitizeReport:
    source: str
    blocked: list[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.blocked)


class _Neutralizer(ast.NodeTransformer):
    def __init__(self, bound: set[str]) -> None:
        self.bound = bound
        self.blocked: list[str] = []

    def visit_Import(self, node: ast.Import) -> ast.AST:
        self.blocked.append(ast.unparse(node))
        return ast.copy_location(ast.Pass(), node)

    visit_ImportFrom = visit_Import

    def visit_Call(self, node: ast.Call) -> ast.AST:
        root = _call_root(node.func)
        if root not in self.bound and (root in DANGEROUS_CALLS or root in DANGEROUS_ROOTS):
            self.blocked.append(ast.unparse(node))
            return ast.copy_location(ast.Constant(value=None), node)
        return self.generic_visit(node)


def _call_root(func: ast.expr) -> str | None:
    while isinstance(func, ast.Attribute):
        func = func.value
    if isinstance(func, ast.Name):
        return func.id
    return None


def _bound_names(statements: list[ast.stmt]) -> set[str]:
    """Names the routine binds itself; calls through them are not library calls."""
    bound: set[str] = set()
    for statement in statements:
        for node in ast.walk(statement):
            if isinstance(node, ast.Name) and isinstance(node.ctx, ast.Store):
                bound.add(node.id)
            elif isinstance(node, ast.FunctionDef):
                bound.add(node.name)
            elif isinstance(node, ast.arg):
                bound.add(node.arg)
            elif isinstance(node, ast.ExceptHandler) and node.name:
                bound.add(node.name)
    return bound


def sanitize_routine(source: str) -> SanitizeReport:
    """Neutralize dangerous calls and imports.

    Source that does not parse is returned unchanged; the load check reports it.
    """
    try:
        module = parse_routine(source)
    except RoutinePolicyError:
        return SanitizeReport(source=source)

    statements = routine_body(module)
    neutralizer = _Neutralizer(_bound_names(statements))
    body = [neutralizer.visit(statement) for statement in statements]
    if not neutralizer.blocked:
        return SanitizeReport(source=source)

    rewritten = "\n".join(ast.unparse(ast.fix_missing_locations(stmt)) for stmt in body)
    return SanitizeReport(source=rewritten, blocked=neutralizer.blocked)
