"""Sandbox Executor — runs untrusted extraction routines against a page snapshot.

The executor has no decision-making authority and no timeout of its own.
It loads a routine (parse, policy check, instrument, compile), runs it in a
namespace holding only the capability bindings, and reports a typed result.
Callers that need a deadline wrap ``execute`` themselves.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from types import CodeType
from typing import Any

from agentic_scraper.conduit.models import PageSnapshot
from agentic_scraper.config.settings import SandboxConfig
from agentic_scraper.sandbox.bindings import (
    ArithmeticGuard,
    RoutineLog,
    StepBudget,
    StepBudgetExceeded,
    build_namespace,
    to_plain,
)
from agentic_scraper.sandbox.policy import (
    ARITH_HOOK,
    ROUTINE_FUNCTION,
    STEP_HOOK,
    RoutinePolicyError,
    check_routine,
    instrument_routine,
    parse_routine,
)
from agentic_scraper.sandbox.sanitizer import sanitize_routine

logger = logging.getLogger(__name__)


class RoutineLoadError(Exception):
    """Raised when a routine cannot be loaded; it is never executed."""


class ExecutionStatus(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    TIMEOUT = "timeout"
    REJECTED = "rejected"


@dataclass
class ExecutionResult:
    """Result of running one routine."""

    status: ExecutionStatus
    value: Any = None
    detail: str = ""
    logs: list[str] = field(default_factory=list)
    steps_used: int = 0

    @property
    def ok(self) -> bool:
        return self.status == ExecutionStatus.SUCCESS


@dataclass(frozen=True)
class LoadedRoutine:
    code: CodeType
    source: str
    blocked: tuple[str, ...] = ()


class SandboxExecutor:
    """Capability-gated executor for extraction routines.

    Contract:
    - ``can_load`` / ``load`` check a routine without invoking it
    - ``execute`` never raises for routine faults; it returns an ExecutionResult
    - Routines see only the bindings in ``agentic_scraper.sandbox.bindings``
    """

    def __init__(self, config: SandboxConfig | None = None) -> None:
        self._config = config or SandboxConfig()

    def load(self, routine: str) -> LoadedRoutine:
        """Sanitize (if enabled), check and compile a routine.

        Raises:
            RoutineLoadError: the routine is outside the supported grammar.
        """
        source = routine
        blocked: list[str] = []
        if self._config.sanitize:
            report = sanitize_routine(routine)
            source = report.source
            blocked = report.blocked
            if report.changed:
                logger.warning("Sanitizer neutralized %d construct(s) in routine", len(blocked))

        try:
            module = parse_routine(source)
            check_routine(module)
        except RoutinePolicyError as exc:
            raise RoutineLoadError(str(exc)) from exc

        code = compile(instrument_routine(module), "<routine>", "exec")
        return LoadedRoutine(code=code, source=source, blocked=tuple(blocked))

    def load_error(self, routine: str) -> str | None:
        """Return why ``routine`` cannot be loaded, or None if it can."""
        try:
            self.load(routine)
        except RoutineLoadError as exc:
            return str(exc)
        return None

    def can_load(self, routine: str) -> bool:
        return self.load_error(routine) is None

    def execute(self, snapshot: PageSnapshot, routine: str) -> ExecutionResult:
        """Run ``routine`` against the document of ``snapshot``.

        Blocks until the routine returns or fails.
        """
        try:
            loaded = self.load(routine)
        except RoutineLoadError as exc:
            return ExecutionResult(status=ExecutionStatus.REJECTED, detail=str(exc))

        budget = StepBudget(self._config.max_steps)
        log = RoutineLog(self._config.max_log_lines)
        guard = ArithmeticGuard(self._config.max_sequence_length, self._config.max_int_bits)
        namespace = build_namespace(
            snapshot.rendered_html, budget, guard, log, STEP_HOOK, ARITH_HOOK
        )

        try:
            exec(loaded.code, namespace)  # defines the wrapper function only
            value = namespace[ROUTINE_FUNCTION]()
            plain = to_plain(value)
        except StepBudgetExceeded as exc:
            return ExecutionResult(
                status=ExecutionStatus.FAILURE,
                detail=str(exc),
                logs=log.lines,
                steps_used=budget.used,
            )
        except Exception as exc:
            return ExecutionResult(
                status=ExecutionStatus.FAILURE,
                detail=f"{type(exc).__name__}: {exc}",
                logs=log.lines,
                steps_used=budget.used,
            )

        # a bare except inside the routine can swallow the budget error
        if budget.used > budget.max_steps:
            return ExecutionResult(
                status=ExecutionStatus.FAILURE,
                detail=f"Routine exceeded its budget of {budget.max_steps} steps",
                logs=log.lines,
                steps_used=budget.used,
            )

        return ExecutionResult(
            status=ExecutionStatus.SUCCESS,
            value=plain,
            logs=log.lines,
            steps_used=budget.used,
        )
