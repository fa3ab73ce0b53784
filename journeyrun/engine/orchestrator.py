"""Journey orchestrator - runs the state machine against storage.

One orchestrator drives one session. It owns the session state, feeds
events through ``transition`` and performs the resulting effects one at a
time, so a session never issues two writes for the same run concurrently.
Everything it knows is rebuilt from the store when a run is opened; there
are no process-wide caches.

Known limitation: two sessions driving the same run (two open tabs) race.
Creation is get-or-insert, but later writes are last-writer-wins.
"""

import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any

from journeyrun.engine.facts import facts_for_state
from journeyrun.engine.machine import transition
from journeyrun.engine.scoring import compute_completion_stats, remediation_from_state
from journeyrun.engine.views import SessionView, build_session_view
from journeyrun.errors import (
    InitializationError,
    JourneyError,
    PersistenceWriteError,
    RecordNotFoundError,
)
from journeyrun.models.graph import JourneyGraph, QuizContent, load_graph
from journeyrun.models.machine import (
    BlockCompleted,
    BlockEntered,
    CheckpointSubmitted,
    CompleteBlock,
    CompletionSubmitted,
    Effect,
    EffectFailed,
    EnterBlock,
    Event,
    FinalizeRun,
    LoadFailed,
    Loading,
    QuizSubmitted,
    RestartRequested,
    RestartRun,
    RunFinalized,
    RunLoaded,
    SessionState,
)
from journeyrun.models.records import (
    BlockState,
    BlockStatus,
    JourneyRecord,
    NextModule,
    RemediationContext,
    Run,
    RunStatus,
    utcnow,
)
from journeyrun.store.sqlite_store import JourneyStore
from journeyrun.tracking.block_states import BlockStateTracker
from journeyrun.tracking.runs import RunTracker

logger = logging.getLogger(__name__)


class JourneyOrchestrator:
    """Drives one learner session through a journey graph."""

    def __init__(self, store: JourneyStore, clock: Callable[[], datetime] = utcnow):
        self.store = store
        self.runs = RunTracker(store, clock)
        self.block_states = BlockStateTracker(store, clock)

        self.state: SessionState = Loading()
        self.journey: JourneyRecord | None = None
        self.run: Run | None = None

    @property
    def graph(self) -> JourneyGraph:
        if self.journey is None:
            raise InitializationError("No journey loaded")
        return self.journey.graph

    # -------------------------------------------------------------------------
    # Entry points
    # -------------------------------------------------------------------------

    def start(self, user_id: str, journey_id: str) -> SessionState:
        """Resume the user's active run on a journey, or start a new one.

        Raises:
            InitializationError: If the journey or run cannot be loaded.
        """
        self.state = Loading()
        try:
            self.journey = self._load_journey(journey_id)
            try:
                self.run = self.runs.load_or_create_active_run(
                    user_id, journey_id, self.graph.start_block_id
                )
            except PersistenceWriteError as e:
                raise InitializationError(f"Could not create run: {e}") from e
            self._load_session()
        except InitializationError as e:
            self._fail_load(e)
            raise
        return self.state

    def open(self, run_id: str) -> SessionState:
        """Load an existing run by id.

        Raises:
            InitializationError: If the run or its journey cannot be loaded.
        """
        self.state = Loading()
        try:
            self.run = self.runs.get(run_id)
            if self.run.status == RunStatus.ABANDONED:
                raise InitializationError(f"Run was abandoned: {run_id}")
            self.journey = self._load_journey(self.run.journey_id)
            self._load_session()
        except InitializationError as e:
            self._fail_load(e)
            raise
        return self.state

    def complete_block(
        self,
        block_id: str,
        output: dict[str, Any] | None = None,
        score: float | None = None,
        weak_topics: list[str] | None = None,
    ) -> SessionState:
        return self.dispatch(
            CompletionSubmitted(
                block_id=block_id, output=output, score=score, weak_topics=weak_topics
            )
        )

    def submit_quiz(self, block_id: str, answers: dict[str, int]) -> SessionState:
        return self.dispatch(QuizSubmitted(block_id=block_id, answers=answers))

    def submit_checkpoint(self, block_id: str) -> SessionState:
        return self.dispatch(CheckpointSubmitted(block_id=block_id))

    def restart(self) -> SessionState:
        return self.dispatch(RestartRequested())

    def view(self) -> SessionView:
        if self.run is None:
            raise InitializationError("No run loaded")
        return build_session_view(
            self.graph, self.run, self.state, self.block_states.list_for_run(self.run.id)
        )

    # -------------------------------------------------------------------------
    # Event loop
    # -------------------------------------------------------------------------

    def dispatch(self, event: Event) -> SessionState:
        """Feed an event through the machine and perform its effects in order."""
        pending: list[Event] = [event]
        while pending:
            current = pending.pop(0)
            before = self.state
            self.state, effects = transition(self.graph, self.state, current)
            if self.state is before and not effects:
                logger.debug("Ignored %s in state %s", current.kind, before.kind)
            for effect in effects:
                pending.append(self._perform(effect))
        return self.state

    def _perform(self, effect: Effect) -> Event:
        try:
            return self._run_effect(effect)
        except PersistenceWriteError as e:
            logger.exception("Failed to perform %s", effect.kind)
            self.state, _ = transition(self.graph, self.state, EffectFailed(message=str(e)))
            raise

    def _run_effect(self, effect: Effect) -> Event:
        run = self._require_run()

        if isinstance(effect, CompleteBlock):
            state = self.block_states.complete(
                run.id,
                effect.block_id,
                output=effect.output,
                score=effect.score,
                weak_topics=effect.weak_topics,
            )
            return BlockCompleted(block_state=state)

        if isinstance(effect, EnterBlock):
            return BlockEntered(block_state=self._enter(effect.block_id))

        if isinstance(effect, FinalizeRun):
            states = self.block_states.list_for_run(run.id)
            stats = self.runs.finalize(run.id, compute_completion_stats(states))
            self.run = self.runs.get(run.id)
            return RunFinalized(stats=stats, next_module=self._lookup_next_module())

        if isinstance(effect, RestartRun):
            self.run = self.runs.restart(run.id, self.graph.start_block_id)
            return RunLoaded(block_state=self._enter(self.graph.start_block_id))

        raise TypeError(f"Unhandled effect: {effect.kind}")

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _require_run(self) -> Run:
        if self.run is None:
            raise InitializationError("No run loaded")
        return self.run

    def _load_journey(self, journey_id: str) -> JourneyRecord:
        record = self.store.get_journey(journey_id)
        if record is None:
            raise RecordNotFoundError(f"Journey not found: {journey_id}")
        load_graph(record.graph)
        return record

    def _fail_load(self, error: InitializationError) -> None:
        logger.error("Journey initialization failed: %s", error)
        failed = LoadFailed(message=str(error), retryable=error.retryable)
        self.state, _ = transition(None, Loading(), failed)

    def _enter(self, block_id: str) -> BlockState:
        """Point the run at a block, then load or create its state."""
        run = self._require_run()
        if run.current_block_id != block_id:
            self.run = self.runs.advance_pointer(run.id, block_id)
        return self.block_states.load_or_create(run.id, block_id)

    def _resume(self, block_id: str) -> BlockState:
        """Like _enter, but leaves an already entered block's timer alone."""
        run = self._require_run()
        if run.current_block_id != block_id:
            self.run = self.runs.advance_pointer(run.id, block_id)
        return self.block_states.resume(run.id, block_id)

    def _load_session(self) -> None:
        run = self._require_run()
        graph = self.graph
        states = self.block_states.list_for_run(run.id)

        if run.status == RunStatus.COMPLETED:
            self.dispatch(
                RunFinalized(
                    stats=compute_completion_stats(states),
                    next_module=self._lookup_next_module(),
                )
            )
            return

        block_id = run.current_block_id or graph.start_block_id
        if graph.get_block(block_id) is None:
            raise InitializationError(f"Run {run.id} points at a missing block: {block_id}")

        try:
            block_state = self._resume(block_id)
        except PersistenceWriteError as e:
            raise InitializationError(f"Could not enter block {block_id}: {e}") from e

        self.dispatch(
            RunLoaded(
                block_state=block_state,
                carried_facts=self._carried_facts(states, block_id),
                remediation=self._remediation(states),
            )
        )

    def _carried_facts(self, states: list[BlockState], current_block_id: str) -> dict[str, Any]:
        """Facts of the most recently completed block other than the current one."""
        completed = [
            s
            for s in states
            if s.status == BlockStatus.COMPLETED
            and s.block_id != current_block_id
            and s.completed_at is not None
        ]
        if not completed:
            return {}
        latest = max(completed, key=lambda s: s.completed_at)
        return facts_for_state(self.graph, latest)

    def _remediation(self, states: list[BlockState]) -> RemediationContext | None:
        """The remediation context of the latest quiz attempt, if it failed."""
        quiz_states = [
            s
            for s in states
            if s.completed_at is not None
            and isinstance(getattr(self.graph.get_block(s.block_id), "content", None), QuizContent)
        ]
        if not quiz_states:
            return None
        latest = max(quiz_states, key=lambda s: s.completed_at)
        return remediation_from_state(self.graph.get_block(latest.block_id).content, latest)

    def _lookup_next_module(self) -> NextModule | None:
        """Find the published module that follows this journey's module, if any."""
        journey = self.journey
        if journey is None or journey.module_id is None:
            return None
        try:
            module = self.store.get_module(journey.module_id)
            if module is None:
                return None
            return self.store.find_next_published_module(module.track_id, module.module_id)
        except JourneyError as e:
            logger.warning("Next-module lookup failed for %s: %s", journey.journey_id, e)
            return None

