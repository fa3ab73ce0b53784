"""Tests for the block state and run trackers."""

import pytest

from journeyrun.errors import PersistenceWriteError, RecordNotFoundError
from journeyrun.models.records import BlockStatus, CompletionStats, RunStatus
from journeyrun.store.sqlite_store import JourneyStore
from journeyrun.tracking.block_states import BlockStateTracker
from journeyrun.tracking.runs import RunTracker


@pytest.fixture
def runs(store: JourneyStore, clock) -> RunTracker:
    return RunTracker(store, clock)


@pytest.fixture
def tracker(store: JourneyStore, clock) -> BlockStateTracker:
    return BlockStateTracker(store, clock)


# =============================================================================
# Block state tracker
# =============================================================================


class TestLoadOrCreate:
    def test_first_visit_starts_block(self, tracker: BlockStateTracker, clock):
        state = tracker.load_or_create("r1", "A")

        assert state.status == BlockStatus.IN_PROGRESS
        assert state.started_at == clock.now
        assert state.last_entered_at == clock.now
        assert state.attempts_count == 0

    def test_reentry_reuses_state(self, tracker: BlockStateTracker, clock):
        first = tracker.load_or_create("r1", "A")
        clock.advance(30)
        second = tracker.load_or_create("r1", "A")

        assert second.id == first.id
        assert second.started_at == first.started_at
        assert second.last_entered_at == clock.now
        assert len(tracker.list_for_run("r1")) == 1

    def test_completed_status_is_kept_on_reentry(self, tracker: BlockStateTracker):
        tracker.load_or_create("r1", "A")
        tracker.complete("r1", "A", score=80)

        state = tracker.load_or_create("r1", "A")
        assert state.status == BlockStatus.COMPLETED


class TestResume:
    def test_resume_keeps_entry_time(self, tracker: BlockStateTracker, clock):
        entered = tracker.load_or_create("r1", "A")
        clock.advance(30)

        resumed = tracker.resume("r1", "A")

        assert resumed == entered
        assert resumed.last_entered_at == entered.last_entered_at

    def test_time_counts_from_first_entry_across_resumes(self, tracker: BlockStateTracker, clock):
        tracker.load_or_create("r1", "A")
        clock.advance(30)
        tracker.resume("r1", "A")
        clock.advance(10)

        assert tracker.complete("r1", "A").time_spent_seconds == 40

    def test_resume_enters_unvisited_block(self, tracker: BlockStateTracker, clock):
        state = tracker.resume("r1", "A")

        assert state.status == BlockStatus.IN_PROGRESS
        assert state.last_entered_at == clock.now


class TestComplete:
    def test_complete_records_outcome(self, tracker: BlockStateTracker, clock):
        tracker.load_or_create("r1", "A")
        clock.advance(42.9)

        state = tracker.complete(
            "r1", "A", output={"answers": {"q1": 0}}, score=50, weak_topics=["loops"]
        )

        assert state.status == BlockStatus.COMPLETED
        assert state.attempts_count == 1
        assert state.time_spent_seconds == 42
        assert state.output_payload == {"answers": {"q1": 0}}
        assert state.score == 50
        assert state.weak_topics == ["loops"]
        assert state.completed_at == clock.now

    def test_attempts_and_time_accumulate_across_visits(self, tracker: BlockStateTracker, clock):
        tracker.load_or_create("r1", "A")
        clock.advance(10)
        tracker.complete("r1", "A", score=40)

        # Leave, come back later
        clock.advance(300)
        tracker.load_or_create("r1", "A")
        clock.advance(20)
        state = tracker.complete("r1", "A", score=80)

        assert state.attempts_count == 2
        assert state.time_spent_seconds == 30
        assert state.score == 80

    def test_repeat_completion_without_reentry_is_not_double_counted(
        self, tracker: BlockStateTracker, clock
    ):
        tracker.load_or_create("r1", "A")
        clock.advance(10)
        tracker.complete("r1", "A")
        clock.advance(5)
        state = tracker.complete("r1", "A")

        assert state.time_spent_seconds == 15
        assert state.attempts_count == 2

    def test_complete_without_entry_creates_state(self, tracker: BlockStateTracker):
        state = tracker.complete("r1", "A", output={"done": True})

        assert state.status == BlockStatus.COMPLETED
        assert state.attempts_count == 1
        assert state.time_spent_seconds == 0

    def test_status_never_moves_back(self, tracker: BlockStateTracker, store: JourneyStore):
        state = tracker.load_or_create("r1", "A")
        store.update_block_state(state.id, status=BlockStatus.FAILED)

        assert tracker.load_or_create("r1", "A").status == BlockStatus.FAILED
        assert tracker.complete("r1", "A").status == BlockStatus.COMPLETED

    def test_clear(self, tracker: BlockStateTracker):
        tracker.load_or_create("r1", "A")
        tracker.load_or_create("r1", "B")

        assert tracker.clear("r1") == 2
        assert tracker.get("r1", "A") is None


# =============================================================================
# Run tracker
# =============================================================================


class TestRunTracker:
    def test_load_or_create_is_idempotent(self, runs: RunTracker):
        first = runs.load_or_create_active_run("u1", "j1", "A")
        second = runs.load_or_create_active_run("u1", "j1", "B")

        assert first.id == second.id
        assert second.current_block_id == "A"
        assert first.status == RunStatus.IN_PROGRESS

    def test_get_missing_run(self, runs: RunTracker):
        with pytest.raises(RecordNotFoundError):
            runs.get("ghost")

    def test_advance_pointer(self, runs: RunTracker):
        run = runs.load_or_create_active_run("u1", "j1", "A")
        assert runs.advance_pointer(run.id, "B").current_block_id == "B"
        assert runs.get(run.id).current_block_id == "B"

    def test_finalize(self, runs: RunTracker, clock):
        run = runs.load_or_create_active_run("u1", "j1", "A")
        stats = CompletionStats(total_time_seconds=60, blocks_completed=2, average_score=75)

        assert runs.finalize(run.id, stats) == stats

        stored = runs.get(run.id)
        assert stored.status == RunStatus.COMPLETED
        assert stored.completed_at == clock.now

    def test_finalized_run_is_no_longer_active(self, runs: RunTracker):
        run = runs.load_or_create_active_run("u1", "j1", "A")
        runs.finalize(run.id, CompletionStats())

        fresh = runs.load_or_create_active_run("u1", "j1", "A")
        assert fresh.id != run.id

    def test_restart_is_idempotent(self, runs: RunTracker, tracker: BlockStateTracker):
        run = runs.load_or_create_active_run("u1", "j1", "A")
        tracker.load_or_create(run.id, "A")
        tracker.complete(run.id, "A", score=90)
        runs.advance_pointer(run.id, "B")
        runs.finalize(run.id, CompletionStats())

        once = runs.restart(run.id, "A")
        twice = runs.restart(run.id, "A")

        assert once == twice
        assert twice.status == RunStatus.IN_PROGRESS
        assert twice.current_block_id == "A"
        assert twice.completed_at is None
        assert tracker.list_for_run(run.id) == []

    def test_failed_restart_keeps_progress(self, runs: RunTracker, tracker: BlockStateTracker):
        run = runs.load_or_create_active_run("u1", "j1", "A")
        tracker.load_or_create(run.id, "A")
        tracker.complete(run.id, "A", score=90)
        runs.finalize(run.id, CompletionStats())
        # The user has since started over in a new run
        runs.load_or_create_active_run("u1", "j1", "A")

        with pytest.raises(PersistenceWriteError):
            runs.restart(run.id, "A")

        assert runs.get(run.id).status == RunStatus.COMPLETED
        assert [s.block_id for s in tracker.list_for_run(run.id)] == ["A"]

    def test_abandon(self, runs: RunTracker):
        run = runs.load_or_create_active_run("u1", "j1", "A")

        assert runs.abandon(run.id).status == RunStatus.ABANDONED
        assert runs.load_or_create_active_run("u1", "j1", "A").id != run.id
