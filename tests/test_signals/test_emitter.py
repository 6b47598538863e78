"""Tests for the Signal emitter system."""

import logging

import pytest

from agentic_scraper.signals.emitter import SignalEmitter
from agentic_scraper.signals.types import SignalType


@pytest.fixture
def tmp_ledger(tmp_path):
    return tmp_path / "test_run" / "signals.jsonl"


@pytest.fixture
def emitter(tmp_ledger):
    return SignalEmitter(run_id="test_run_001", ledger_path=tmp_ledger)


class TestSignalEmitter:
    """Test signal emission, persistence, and broadcasting."""

    @pytest.mark.asyncio
    async def test_emit_creates_signal(self, emitter):
        signal = await emitter.emit(
            SignalType.PHASE_TRANSITION, {"from_phase": "SETUP", "to_phase": "GENERATING"}
        )
        assert signal.sequence == 1
        assert signal.signal_type == SignalType.PHASE_TRANSITION
        assert signal.run_id == "test_run_001"
        assert signal.payload["from_phase"] == "SETUP"

    @pytest.mark.asyncio
    async def test_monotonic_sequence(self, emitter):
        s1 = await emitter.emit(SignalType.PHASE_TRANSITION)
        s2 = await emitter.emit(SignalType.ATTEMPT_RECORDED)
        s3 = await emitter.emit(SignalType.RUN_COMPLETE)
        assert [s1.sequence, s2.sequence, s3.sequence] == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_signals_are_immutable(self, emitter):
        signal = await emitter.emit(SignalType.PHASE_TRANSITION, {"key": "value"})
        with pytest.raises(Exception):
            signal.payload = {"modified": True}

    @pytest.mark.asyncio
    async def test_signals_persisted_to_ledger(self, emitter, tmp_ledger):
        await emitter.emit(SignalType.PHASE_TRANSITION, {"to_phase": "GENERATING"})
        await emitter.emit(SignalType.RUN_COMPLETE, {"attempts_made": 1})

        assert tmp_ledger.exists()
        lines = tmp_ledger.read_text(encoding="utf-8").strip().split("\n")
        assert len(lines) == 2

    @pytest.mark.asyncio
    async def test_no_ledger_without_path(self, tmp_path):
        emitter = SignalEmitter(run_id="memory_only")
        await emitter.emit(SignalType.PHASE_TRANSITION)
        assert len(emitter.signals) == 1
        assert list(tmp_path.iterdir()) == []

    @pytest.mark.asyncio
    async def test_load_ledger(self, emitter, tmp_ledger):
        await emitter.emit(SignalType.PHASE_TRANSITION, {"to_phase": "GENERATING"})
        await emitter.emit(SignalType.RUN_COMPLETE, {"attempts_made": 1})

        loaded = SignalEmitter.load_ledger(tmp_ledger)
        assert len(loaded) == 2
        assert loaded[0].signal_type == SignalType.PHASE_TRANSITION
        assert loaded[1].signal_type == SignalType.RUN_COMPLETE

    def test_load_missing_ledger(self, tmp_path):
        assert SignalEmitter.load_ledger(tmp_path / "absent.jsonl") == []

    @pytest.mark.asyncio
    async def test_subscriber_receives_signals(self, emitter):
        received = []

        def on_signal(signal):
            received.append(signal)

        emitter.subscribe(on_signal)
        await emitter.emit(SignalType.PHASE_TRANSITION)
        await emitter.emit(SignalType.ATTEMPT_RECORDED)

        assert len(received) == 2

    @pytest.mark.asyncio
    async def test_async_subscriber_is_awaited(self, emitter):
        received = []

        async def on_signal(signal):
            received.append(signal.signal_type)

        emitter.subscribe(on_signal)
        await emitter.emit(SignalType.OBSERVATION_CAPTURED)

        assert received == [SignalType.OBSERVATION_CAPTURED]

    @pytest.mark.asyncio
    async def test_unsubscribe(self, emitter):
        received = []

        def on_signal(signal):
            received.append(signal)

        emitter.subscribe(on_signal)
        await emitter.emit(SignalType.PHASE_TRANSITION)

        emitter.unsubscribe(on_signal)
        await emitter.emit(SignalType.ATTEMPT_RECORDED)

        assert len(received) == 1

    @pytest.mark.asyncio
    async def test_subscriber_error_does_not_break_emission(self, emitter, caplog):
        def bad_subscriber(signal):
            raise RuntimeError("Subscriber failure")

        emitter.subscribe(bad_subscriber)

        with caplog.at_level(logging.ERROR):
            signal = await emitter.emit(SignalType.PHASE_TRANSITION)

        assert signal.sequence == 1
        records = [r for r in caplog.records if r.getMessage() == "scraper_error"]
        assert records
        assert records[0].error_code == "SIGNAL_SUBSCRIBER_FAILURE"
        assert records[0].suppressed is True

    @pytest.mark.asyncio
    async def test_signals_property_returns_copy(self, emitter):
        await emitter.emit(SignalType.PHASE_TRANSITION)
        signals = emitter.signals
        assert len(signals) == 1
        signals.clear()
        assert len(emitter.signals) == 1  # Original not affected

    @pytest.mark.asyncio
    async def test_emit_phase_transition_convenience(self, emitter):
        signal = await emitter.emit_phase_transition("SETUP", "GENERATING", {"reason": "start"})
        assert signal.signal_type == SignalType.PHASE_TRANSITION
        assert signal.payload["from_phase"] == "SETUP"
        assert signal.payload["to_phase"] == "GENERATING"
        assert signal.payload["reason"] == "start"

    @pytest.mark.asyncio
    async def test_emit_run_complete_convenience(self, emitter):
        signal = await emitter.emit_run_complete(attempts_made=2, total_duration_s=4.5)
        assert signal.signal_type == SignalType.RUN_COMPLETE
        assert signal.payload["attempts_made"] == 2
        assert signal.payload["total_duration_s"] == 4.5

    @pytest.mark.asyncio
    async def test_emit_run_failed_convenience(self, emitter):
        signal = await emitter.emit_run_failed(
            failure_reason="Repair failed", phase_at_failure="REPAIRING", attempts_made=3
        )
        assert signal.signal_type == SignalType.RUN_FAILED
        assert signal.payload["failure_reason"] == "Repair failed"
        assert signal.payload["phase_at_failure"] == "REPAIRING"
        assert signal.payload["attempts_made"] == 3

    @pytest.mark.asyncio
    async def test_ledger_write_failure_is_reported(self, tmp_path, caplog):
        ledger = tmp_path / "run" / "signals.jsonl"
        ledger.mkdir(parents=True)
        emitter = SignalEmitter(run_id="run", ledger_path=ledger)

        with caplog.at_level(logging.ERROR):
            signal = await emitter.emit(SignalType.PHASE_TRANSITION)

        assert signal.sequence == 1
        assert len(emitter.signals) == 1
        records = [r for r in caplog.records if r.getMessage() == "scraper_error"]
        assert records[0].error_code == "SIGNAL_PERSIST_FAILED"
        assert records[0].details["sequence"] == 1
