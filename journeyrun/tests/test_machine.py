"""Tests for the pure journey state machine."""

import pytest

from journeyrun.engine.machine import transition
from journeyrun.models.graph import load_graph
from journeyrun.models.machine import (
    Active,
    BlockCompleted,
    BlockEntered,
    CheckpointSubmitted,
    CompleteBlock,
    CompletionSubmitted,
    EffectFailed,
    EnterBlock,
    Errored,
    FinalizeRun,
    Finished,
    LoadFailed,
    Loading,
    QuizSubmitted,
    RestartRequested,
    RestartRun,
    RunFinalized,
    RunLoaded,
)
from journeyrun.models.records import BlockState, BlockStatus, CompletionStats


@pytest.fixture
def graph(remediation_data):
    return load_graph(remediation_data)


@pytest.fixture
def linear(linear_data):
    return load_graph(linear_data)


def make_state(block_id: str, **kwargs) -> BlockState:
    return BlockState(id=f"s_{block_id}", run_id="r1", block_id=block_id, **kwargs)


def active_on(block_id: str, **kwargs) -> Active:
    return Active(block_id=block_id, block_state=make_state(block_id), **kwargs)


# =============================================================================
# Loading
# =============================================================================


def test_run_loaded_activates(graph):
    state, effects = transition(graph, Loading(), RunLoaded(block_state=make_state("A")))

    assert isinstance(state, Active)
    assert state.block_id == "A"
    assert state.submitting is False
    assert effects == []


def test_load_failed_errors():
    state, effects = transition(None, Loading(), LoadFailed(message="boom", retryable=False))

    assert isinstance(state, Errored)
    assert state.message == "boom"
    assert state.retryable is False
    assert effects == []


def test_completed_run_loads_as_finished(graph):
    stats = CompletionStats(blocks_completed=3)
    state, _ = transition(graph, Loading(), RunFinalized(stats=stats))

    assert isinstance(state, Finished)
    assert state.stats == stats


# =============================================================================
# Submissions
# =============================================================================


class TestQuizSubmission:
    def test_quiz_is_scored_and_persisted(self, graph):
        state, effects = transition(
            graph, active_on("A"), QuizSubmitted(block_id="A", answers={"q1": 0, "q2": 0})
        )

        assert state.submitting is True
        assert effects == [
            CompleteBlock(
                block_id="A",
                output={"answers": {"q1": 0, "q2": 0}, "passed": True},
                score=50,
                weak_topics=["functions", "loops"],
            )
        ]

    def test_failed_quiz_sets_remediation(self, graph):
        state, _ = transition(graph, active_on("A"), QuizSubmitted(block_id="A", answers={}))

        assert state.remediation is not None
        assert state.remediation.weak_topics == ["loops", "functions"]
        assert len(state.remediation.wrong_questions) == 2

    def test_quiz_answers_for_non_quiz_block_are_ignored(self, graph):
        current = active_on("B")
        state, effects = transition(graph, current, QuizSubmitted(block_id="B", answers={}))

        assert state is current
        assert effects == []


def test_generic_completion(graph):
    state, effects = transition(
        graph,
        active_on("B"),
        CompletionSubmitted(block_id="B", output={"steps": ["s1"]}, score=100),
    )

    assert state.submitting is True
    assert effects == [CompleteBlock(block_id="B", output={"steps": ["s1"]}, score=100)]


def test_double_submit_is_ignored(graph):
    first, effects = transition(graph, active_on("B"), CompletionSubmitted(block_id="B"))
    assert len(effects) == 1

    second, effects = transition(graph, first, CompletionSubmitted(block_id="B"))
    assert second is first
    assert effects == []


def test_submission_for_other_block_is_ignored(graph):
    current = active_on("B")
    state, effects = transition(graph, current, CompletionSubmitted(block_id="A"))

    assert state is current
    assert effects == []


class TestCheckpointSubmission:
    def test_checkpoint_uses_carried_facts(self, linear):
        current = active_on("check", carried_facts={"quiz.scorePercent": 80})
        state, effects = transition(linear, current, CheckpointSubmitted(block_id="check"))

        assert state.submitting is True
        assert effects == [CompleteBlock(block_id="check", output={"passed": True}, score=100)]

    def test_failed_checkpoint(self, linear):
        current = active_on("check", carried_facts={"quiz.scorePercent": 20})
        _, effects = transition(linear, current, CheckpointSubmitted(block_id="check"))

        assert effects[0].output == {"passed": False}
        assert effects[0].score == 0


# =============================================================================
# Routing
# =============================================================================


class TestRouting:
    def test_low_score_routes_to_remediation(self, graph):
        pending = active_on("A", submitting=True)
        completed = make_state("A", status=BlockStatus.COMPLETED, score=40, attempts_count=1)

        state, effects = transition(graph, pending, BlockCompleted(block_state=completed))

        assert effects == [EnterBlock(block_id="C")]
        assert state.carried_facts["quiz.scorePercent"] == 40
        assert state.submitting is True

    def test_passing_score_routes_forward(self, graph):
        pending = active_on("A", submitting=True)
        completed = make_state("A", status=BlockStatus.COMPLETED, score=80)

        _, effects = transition(graph, pending, BlockCompleted(block_state=completed))

        assert effects == [EnterBlock(block_id="B")]

    def test_no_outgoing_edge_finalizes(self, graph):
        pending = active_on("B", submitting=True)
        completed = make_state("B", status=BlockStatus.COMPLETED)

        _, effects = transition(graph, pending, BlockCompleted(block_state=completed))

        assert effects == [FinalizeRun()]

    def test_block_entered_moves_on_and_keeps_facts(self, graph):
        pending = active_on("A", submitting=True, carried_facts={"quiz.scorePercent": 40})

        state, effects = transition(graph, pending, BlockEntered(block_state=make_state("C")))

        assert state.block_id == "C"
        assert state.submitting is False
        assert state.carried_facts == {"quiz.scorePercent": 40}
        assert effects == []

    def test_run_finalized_finishes(self, graph):
        state, _ = transition(
            graph, active_on("B", submitting=True), RunFinalized(stats=CompletionStats())
        )
        assert isinstance(state, Finished)


# =============================================================================
# Failures and restart
# =============================================================================


def test_effect_failure_reenables_submission(graph):
    pending = active_on("B", submitting=True)

    state, effects = transition(graph, pending, EffectFailed(message="disk full"))

    assert state.submitting is False
    assert state.block_id == "B"
    assert effects == []


@pytest.mark.parametrize(
    "current",
    [
        Loading(),
        Errored(message="x"),
        Active(block_id="B", block_state=BlockState(id="s", run_id="r1", block_id="B")),
        Finished(stats=CompletionStats()),
    ],
)
def test_restart_from_any_state(graph, current):
    state, effects = transition(graph, current, RestartRequested())

    assert isinstance(state, Loading)
    assert effects == [RestartRun()]


def test_finished_ignores_submissions(graph):
    finished = Finished(stats=CompletionStats())
    state, effects = transition(graph, finished, CompletionSubmitted(block_id="B"))

    assert state is finished
    assert effects == []
