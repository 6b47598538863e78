"""Tests for Conduit phase definitions and transition validation."""


from agentic_scraper.conduit.phases import TERMINAL_PHASES, VALID_TRANSITIONS, Phase


class TestPhaseDefinitions:
    """Test that all phases are properly defined."""

    def test_all_phases_exist(self):
        expected = {
            "SETUP", "GENERATING", "ATTEMPTING", "REPAIRING",
            "SUCCEEDED", "EXHAUSTED", "SETUP_FAILED", "CANCELLED",
        }
        assert {p.value for p in Phase} == expected

    def test_terminal_phases(self):
        assert TERMINAL_PHASES == {
            Phase.SUCCEEDED, Phase.EXHAUSTED, Phase.SETUP_FAILED, Phase.CANCELLED,
        }

    def test_terminal_phases_have_no_transitions(self):
        for phase in TERMINAL_PHASES:
            assert VALID_TRANSITIONS[phase] == set()

    def test_every_phase_has_transition_entry(self):
        for phase in Phase:
            assert phase in VALID_TRANSITIONS

    def test_setup_transitions(self):
        assert VALID_TRANSITIONS[Phase.SETUP] == {
            Phase.GENERATING, Phase.SETUP_FAILED, Phase.CANCELLED,
        }

    def test_attempting_can_rerun_or_repair(self):
        targets = VALID_TRANSITIONS[Phase.ATTEMPTING]
        assert Phase.ATTEMPTING in targets
        assert Phase.REPAIRING in targets
        assert Phase.SUCCEEDED in targets
        assert Phase.EXHAUSTED in targets

    def test_repairing_transitions(self):
        assert VALID_TRANSITIONS[Phase.REPAIRING] == {
            Phase.ATTEMPTING, Phase.EXHAUSTED, Phase.CANCELLED,
        }

    def test_only_attempting_succeeds(self):
        sources = {p for p in Phase if Phase.SUCCEEDED in VALID_TRANSITIONS[p]}
        assert sources == {Phase.ATTEMPTING}

    def test_setup_failure_never_follows_an_attempt(self):
        assert Phase.SETUP_FAILED not in VALID_TRANSITIONS[Phase.ATTEMPTING]
        assert Phase.SETUP_FAILED not in VALID_TRANSITIONS[Phase.REPAIRING]

    def test_non_terminal_phases_can_be_cancelled(self):
        for phase in Phase:
            if phase not in TERMINAL_PHASES:
                assert Phase.CANCELLED in VALID_TRANSITIONS[phase], (
                    f"Phase {phase.value} cannot transition to CANCELLED"
                )

    def test_no_transitions_to_setup(self):
        for phase in Phase:
            assert Phase.SETUP not in VALID_TRANSITIONS[phase], (
                f"Phase {phase.value} can transition to SETUP, which is not allowed"
            )
