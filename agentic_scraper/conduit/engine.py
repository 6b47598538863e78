"""The Conduit — attempt state machine of one extraction request.

The Conduit is a finite state machine. It does not generate code and it
does not interpret pages. It acquires a snapshot, obtains an artifact from
the content generator, and drives the execute -> validate -> repair loop
until the request succeeds, exhausts its retry budget, fails to set up, or
is cancelled.

Responsibilities:
- Own exactly one PageSnapshot per request and release it on every exit path
- Check every artifact structurally before anything from it is executed
- Run routines through the Sandbox Executor under an external deadline
- Judge routine output with the Schema Validator
- Keep the append-only Attempt log and the observation trail
- Emit Signals at every phase boundary

MUST NOT:
- Let execution or validation faults escape as exceptions
- Merge artifacts or repair from more than one failure at a time
- Run more attempts than the retry budget
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from typing import Any

from agentic_scraper.conduit.collaborators import ContentGenerator, PageProvider
from agentic_scraper.conduit.errors import ConduitError, StructuralArtifactError
from agentic_scraper.conduit.models import (
    Attempt,
    AttemptSuccess,
    ExecutionFailure,
    ExtractionArtifact,
    ExtractionRequest,
    Observation,
    PageSnapshot,
    ScrapingResult,
    ValidationFailure,
)
from agentic_scraper.conduit.phases import TERMINAL_PHASES, VALID_TRANSITIONS, Phase
from agentic_scraper.config.settings import ScraperConfig
from agentic_scraper.sandbox.executor import ExecutionResult, ExecutionStatus, SandboxExecutor
from agentic_scraper.schema.validator import (
    CompiledSchema,
    SchemaCompileError,
    compile_schema,
    format_issues,
)
from agentic_scraper.signals.emitter import SignalEmitter
from agentic_scraper.signals.types import SignalType
from agentic_scraper.telemetry.errors import ErrorCode, emit_structured_error

logger = logging.getLogger(__name__)


def _describe(exc: BaseException) -> str:
    return str(exc) or type(exc).__name__


class Conduit:
    """The runtime controller of a single extraction request.

    A Conduit runs once. Build a new one for every request; nothing is
    shared between requests except the stateless collaborators.
    """

    def __init__(
        self,
        request: ExtractionRequest,
        *,
        page_provider: PageProvider,
        generator: ContentGenerator,
        executor: SandboxExecutor,
        config: ScraperConfig | None = None,
        run_id: str | None = None,
    ) -> None:
        self._config = config or ScraperConfig()
        self._request = request
        self._budget = request.retry_budget or self._config.retry.max_retries
        self._run_id = run_id or f"run_{uuid.uuid4().hex[:12]}"
        self._phase = Phase.SETUP
        self._started = False
        self._cancel_requested = False
        self._started_at = 0.0

        self._provider = page_provider
        self._generator = generator
        self._executor = executor
        ledger_path = (
            self._config.signals_dir / self._run_id / "signals.jsonl"
            if self._config.signals_dir
            else None
        )
        self._signals = SignalEmitter(run_id=self._run_id, ledger_path=ledger_path)

        self._snapshot: PageSnapshot | None = None
        self._released = False

        # Current artifact. A repair replaces all three together.
        self._artifact: ExtractionArtifact | None = None
        self._compiled: CompiledSchema | None = None
        self._structural_problem: str | None = None
        self._revision = 0

        self._history: list[Attempt] = []
        self._observations: list[Observation] = []
        self._data: Any = None
        self._last_diagnostic: str | None = None
        self._failure_reason: str | None = None

    @property
    def run_id(self) -> str:
        return self._run_id

    @property
    def phase(self) -> Phase:
        return self._phase

    @property
    def retry_budget(self) -> int:
        return self._budget

    @property
    def history(self) -> list[Attempt]:
        return list(self._history)

    @property
    def signals(self) -> SignalEmitter:
        return self._signals

    def cancel(self) -> None:
        """Request cancellation; honoured before the next phase runs."""
        self._cancel_requested = True

    # --- Phase Transition ---

    async def _transition(self, to_phase: Phase, context: dict[str, Any] | None = None) -> None:
        """Transition to a new phase with guard validation and signal emission.

        Every phase transition MUST go through this method.
        """
        if to_phase not in VALID_TRANSITIONS.get(self._phase, set()):
            raise ConduitError(f"Invalid transition: {self._phase.value} -> {to_phase.value}")

        from_phase = self._phase
        self._phase = to_phase

        await self._signals.emit_phase_transition(
            from_phase=from_phase.value,
            to_phase=to_phase.value,
            context=context or {},
        )

    # --- Main Run Loop ---

    async def run(self) -> ScrapingResult:
        """Execute the full request lifecycle and return its ScrapingResult.

        Task cancellation propagates after the snapshot has been released.
        """
        if self._started:
            raise ConduitError(f"Conduit {self._run_id} has already run")
        self._started = True
        self._started_at = time.monotonic()

        try:
            await self._phase_setup()

            while self._phase not in TERMINAL_PHASES:
                if self._cancel_requested:
                    await self._finish(
                        Phase.CANCELLED,
                        f"Request cancelled after {len(self._history)} attempt(s)",
                    )
                    break

                if self._phase == Phase.GENERATING:
                    await self._phase_generating()
                elif self._phase == Phase.ATTEMPTING:
                    await self._phase_attempting()
                elif self._phase == Phase.REPAIRING:
                    await self._phase_repairing()

        except Exception as exc:
            emit_structured_error(
                logger,
                code=ErrorCode.CONDUIT_UNHANDLED_EXCEPTION,
                message=_describe(exc),
                suppressed=True,
                run_id=self._run_id,
                phase=self._phase.value,
            )
            if self._phase not in TERMINAL_PHASES:
                terminal = (
                    Phase.EXHAUSTED
                    if self._phase in (Phase.ATTEMPTING, Phase.REPAIRING)
                    else Phase.SETUP_FAILED
                )
                await self._finish(terminal, f"Unhandled exception: {_describe(exc)}")
        finally:
            await self._release_snapshot()

        return self._build_result(time.monotonic() - self._started_at)

    # --- Phase Implementations ---

    async def _phase_setup(self) -> None:
        """SETUP: acquire the snapshot. Failure here never counts as an attempt."""
        timeout_s = self._config.timeouts.page_load_timeout_s
        logger.info("Navigating to %s", self._request.target)
        try:
            self._snapshot = await self._provider.open(self._request.target, timeout_s=timeout_s)
        except Exception as exc:
            emit_structured_error(
                logger,
                code=ErrorCode.NAVIGATION_FAILED,
                message=_describe(exc),
                suppressed=True,
                run_id=self._run_id,
                phase=self._phase.value,
            )
            await self._finish(Phase.SETUP_FAILED, f"Initial setup failed: {_describe(exc)}")
            return

        await self._observe("initial")
        await self._transition(
            Phase.GENERATING,
            {"dom_hash": self._snapshot.dom_hash, "html_size": len(self._snapshot.rendered_html)},
        )

    async def _phase_generating(self) -> None:
        """GENERATING: obtain the initial artifact and check it structurally."""
        snapshot = self._require_snapshot()
        await self._signals.emit(
            SignalType.GENERATION_REQUESTED,
            {"request_type": "propose", "html_size": len(snapshot.rendered_html)},
        )

        start = time.monotonic()
        try:
            artifact = await asyncio.wait_for(
                self._generator.propose(
                    snapshot.rendered_html, self._request.goal, self._request.target
                ),
                timeout=self._config.timeouts.generation_timeout_s,
            )
        except Exception as exc:
            emit_structured_error(
                logger,
                code=ErrorCode.GENERATION_FAILED,
                message=_describe(exc),
                suppressed=True,
                run_id=self._run_id,
                phase=self._phase.value,
            )
            await self._finish(
                Phase.SETUP_FAILED,
                f"Initial setup failed: artifact generation failed: {_describe(exc)}",
            )
            return
        await self._signals.emit(
            SignalType.GENERATION_COMPLETED,
            {"response_type": "propose", "latency_ms": round((time.monotonic() - start) * 1000)},
        )

        try:
            compiled = self._check_artifact(artifact)
        except StructuralArtifactError as exc:
            self._report_rejection(exc)
            await self._signals.emit(
                SignalType.ARTIFACT_REJECTED, {"reason": str(exc), "artifact_revision": 0}
            )
            # No artifact exists to repair
            self._artifact = artifact
            await self._finish(Phase.SETUP_FAILED, f"Initial setup failed: {exc}")
            return

        self._adopt(artifact, compiled)
        await self._transition(Phase.ATTEMPTING, {"attempt": 1, "retry_budget": self._budget})

    async def _phase_attempting(self) -> None:
        """ATTEMPTING: run the current artifact once and record the outcome."""
        index = len(self._history) + 1
        logger.info("Attempt %d/%d (run %s)", index, self._budget, self._run_id)

        start = time.monotonic()
        outcome = await self._run_attempt(index)
        attempt = Attempt(
            index=index,
            outcome=outcome,
            artifact_revision=self._revision,
            duration_ms=round((time.monotonic() - start) * 1000),
        )
        self._history.append(attempt)
        await self._signals.emit(
            SignalType.ATTEMPT_RECORDED,
            {
                "attempt": index,
                "outcome": outcome.kind,
                "artifact_revision": self._revision,
                "duration_ms": attempt.duration_ms,
            },
        )

        if isinstance(outcome, AttemptSuccess):
            self._data = outcome.value
            await self._observe("success")
            await self._finish(Phase.SUCCEEDED)
            return

        self._last_diagnostic = outcome.diagnostic
        logger.warning("Attempt %d failed: %s", index, outcome.diagnostic)

        if index >= self._budget:
            await self._finish(Phase.EXHAUSTED)
            return

        if (
            isinstance(outcome, ExecutionFailure)
            and not outcome.structural
            and self._config.retry.execution_failure_policy == "retry"
        ):
            await self._signals.emit(
                SignalType.RETRY_ATTEMPT,
                {
                    "attempt_number": index + 1,
                    "max_attempts": self._budget,
                    "reason": outcome.reason,
                },
            )
            await self._transition(Phase.ATTEMPTING, {"attempt": index + 1})
            return

        await self._transition(Phase.REPAIRING, {"failed_attempt": index})

    async def _run_attempt(
        self, index: int
    ) -> AttemptSuccess | ExecutionFailure | ValidationFailure:
        if self._structural_problem is not None or self._compiled is None:
            return ExecutionFailure(
                reason=self._structural_problem or "No loadable artifact", structural=True
            )

        result = await self._execute()
        if result.status != ExecutionStatus.SUCCESS:
            await self._observe(f"error-{index}")
            return ExecutionFailure(reason=result.detail)

        await self._observe(f"attempt-{index}")
        validation = self._compiled.validate(result.value)
        if validation.valid:
            return AttemptSuccess(value=validation.value)
        return ValidationFailure(
            diagnostic=f"Validation failed:\n{format_issues(validation.issues)}",
            raw_value=result.value,
        )

    async def _execute(self) -> ExecutionResult:
        """Run the current routine under the external execution deadline."""
        snapshot = self._require_snapshot()
        routine = self._artifact.extraction_routine if self._artifact else ""
        timeout_s = self._config.timeouts.execution_timeout_s
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(self._executor.execute, snapshot, routine),
                timeout=timeout_s,
            )
        except asyncio.TimeoutError:
            return ExecutionResult(
                status=ExecutionStatus.TIMEOUT,
                detail=f"Routine did not finish within {timeout_s}s",
            )
        except Exception as exc:
            emit_structured_error(
                logger,
                code=ErrorCode.ROUTINE_EXECUTION_FAILED,
                message=_describe(exc),
                suppressed=True,
                run_id=self._run_id,
                phase=self._phase.value,
            )
            return ExecutionResult(status=ExecutionStatus.FAILURE, detail=_describe(exc))

    async def _phase_repairing(self) -> None:
        """REPAIRING: replace the current artifact with one repaired from the last failure."""
        snapshot = self._require_snapshot()
        failed = self._history[-1]
        raw_output = (
            failed.outcome.raw_value if isinstance(failed.outcome, ValidationFailure) else None
        )
        diagnostic = self._last_diagnostic or ""

        await self._signals.emit(
            SignalType.GENERATION_REQUESTED,
            {"request_type": "repair", "failed_attempt": failed.index},
        )
        start = time.monotonic()
        try:
            repaired = await asyncio.wait_for(
                self._generator.repair(
                    snapshot.rendered_html, self._artifact, diagnostic, raw_output
                ),
                timeout=self._config.timeouts.generation_timeout_s,
            )
        except Exception as exc:
            emit_structured_error(
                logger,
                code=ErrorCode.REPAIR_FAILED,
                message=_describe(exc),
                suppressed=True,
                run_id=self._run_id,
                phase=self._phase.value,
            )
            await self._finish(Phase.EXHAUSTED, f"Repair failed: {_describe(exc)}")
            return
        await self._signals.emit(
            SignalType.GENERATION_COMPLETED,
            {"response_type": "repair", "latency_ms": round((time.monotonic() - start) * 1000)},
        )

        self._revision += 1
        try:
            compiled = self._check_artifact(repaired)
        except StructuralArtifactError as exc:
            self._report_rejection(exc)
            await self._signals.emit(
                SignalType.ARTIFACT_REJECTED,
                {"reason": str(exc), "artifact_revision": self._revision},
            )
            self._adopt(repaired, None, problem=str(exc))
        else:
            self._adopt(repaired, compiled)

        await self._transition(
            Phase.ATTEMPTING,
            {"attempt": failed.index + 1, "artifact_revision": self._revision},
        )

    # --- Artifacts ---

    def _check_artifact(self, artifact: ExtractionArtifact) -> CompiledSchema:
        """Structural validation: the schema compiles and the routine loads.

        Raises:
            StructuralArtifactError: with the first problem found.
        """
        try:
            compiled = compile_schema(artifact.schema_description)
        except SchemaCompileError as exc:
            raise StructuralArtifactError(f"Generated schema is invalid: {exc}") from exc

        load_error = self._executor.load_error(artifact.extraction_routine)
        if load_error is not None:
            raise StructuralArtifactError(f"Generated scraper code is invalid: {load_error}")
        return compiled

    def _report_rejection(self, exc: StructuralArtifactError) -> None:
        emit_structured_error(
            logger,
            code=ErrorCode.ARTIFACT_REJECTED,
            message=str(exc),
            suppressed=True,
            run_id=self._run_id,
            phase=self._phase.value,
            details={"artifact_revision": self._revision},
        )

    def _adopt(
        self,
        artifact: ExtractionArtifact,
        compiled: CompiledSchema | None,
        problem: str | None = None,
    ) -> None:
        self._artifact = artifact
        self._compiled = compiled
        self._structural_problem = problem

    # --- Observations ---

    async def _observe(self, label: str) -> None:
        """Capture a labeled observation. Failures are logged, never raised."""
        if not self._config.observations.enabled or self._snapshot is None:
            return
        try:
            observation = await self._provider.observe(self._snapshot, label)
        except Exception as exc:
            emit_structured_error(
                logger,
                code=ErrorCode.OBSERVATION_FAILED,
                message=_describe(exc),
                suppressed=True,
                run_id=self._run_id,
                phase=self._phase.value,
                details={"label": label},
            )
            return
        self._observations.append(observation)
        await self._signals.emit(
            SignalType.OBSERVATION_CAPTURED,
            {"label": observation.label, "reference": observation.reference},
        )

    # --- Terminal Handling ---

    async def _finish(self, phase: Phase, reason: str | None = None) -> None:
        """Enter a terminal phase and emit the matching run signal."""
        from_phase = self._phase
        self._failure_reason = reason
        await self._transition(phase, {"reason": reason} if reason else None)

        attempts_made = len(self._history)
        if phase == Phase.SUCCEEDED:
            await self._signals.emit_run_complete(
                attempts_made=attempts_made,
                total_duration_s=round(time.monotonic() - self._started_at, 2),
            )
        elif phase == Phase.CANCELLED:
            await self._signals.emit(
                SignalType.RUN_CANCELLED,
                {"attempts_made": attempts_made, "phase_at_cancel": from_phase.value},
            )
        else:
            await self._signals.emit_run_failed(
                failure_reason=reason or self._last_diagnostic or phase.value,
                phase_at_failure=from_phase.value,
                attempts_made=attempts_made,
            )

    async def _release_snapshot(self) -> None:
        """Release the snapshot exactly once. A failing release propagates."""
        if self._snapshot is None or self._released:
            return
        self._released = True
        try:
            await self._provider.close(self._snapshot)
        except Exception as exc:
            emit_structured_error(
                logger,
                code=ErrorCode.SNAPSHOT_RELEASE_FAILED,
                message=_describe(exc),
                suppressed=False,
                run_id=self._run_id,
                phase=self._phase.value,
            )
            raise

    def _require_snapshot(self) -> PageSnapshot:
        if self._snapshot is None:
            raise ConduitError(f"No snapshot held in phase {self._phase.value}")
        return self._snapshot

    def _build_result(self, duration_s: float) -> ScrapingResult:
        success = self._phase == Phase.SUCCEEDED
        errors: list[str] | None = None
        if not success:
            errors = []
            if self._last_diagnostic:
                errors.append(self._last_diagnostic)
            if self._failure_reason:
                errors.append(self._failure_reason)
            if not errors:
                errors.append("All scraping attempts failed")

        return ScrapingResult(
            run_id=self._run_id,
            status=self._phase.value,
            success=success,
            data=self._data if success else None,
            artifact=self._artifact,
            attempts=len(self._history),
            history=list(self._history),
            errors=errors,
            observations=list(self._observations),
            html=self._snapshot.rendered_html if self._snapshot and not success else None,
            duration_s=round(duration_s, 2),
        )
