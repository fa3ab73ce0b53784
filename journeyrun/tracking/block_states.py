"""Block state tracker - the per-block attempt record of a run."""

import logging
import math
from collections.abc import Callable
from datetime import datetime
from typing import Any

from journeyrun.models.records import BlockState, BlockStatus, new_id, promote_status, utcnow
from journeyrun.store.sqlite_store import JourneyStore

logger = logging.getLogger(__name__)


class BlockStateTracker:
    """Creates, loads and updates block states.

    Every call writes through to the store immediately. Store failures
    propagate as PersistenceWriteError.
    """

    def __init__(self, store: JourneyStore, clock: Callable[[], datetime] = utcnow):
        self.store = store
        self.clock = clock

    def load_or_create(self, run_id: str, block_id: str) -> BlockState:
        """Return the block's state for this run, creating it on first visit.

        Marks the block as entered now, and promotes a fresh state to
        in_progress.
        """
        now = self.clock()
        state = self.store.create_block_state(
            BlockState(id=new_id(), run_id=run_id, block_id=block_id)
        )

        patch: dict[str, Any] = {"last_entered_at": now}
        if state.status == BlockStatus.NOT_STARTED:
            patch["status"] = BlockStatus.IN_PROGRESS
            patch["started_at"] = now
            logger.debug("Started block %s in run %s", block_id, run_id)
        return self.store.update_block_state(state.id, **patch)

    def resume(self, run_id: str, block_id: str) -> BlockState:
        """Return the block's state when a session is rebuilt from storage.

        Reopening a run is not a visit: an existing state is returned as
        stored, so time keeps counting from its last entry. Only a block
        that was never entered is entered here.
        """
        state = self.store.get_block_state(run_id, block_id)
        if state is None or state.status == BlockStatus.NOT_STARTED:
            return self.load_or_create(run_id, block_id)
        return state

    def complete(
        self,
        run_id: str,
        block_id: str,
        output: dict[str, Any] | None = None,
        score: float | None = None,
        weak_topics: list[str] | None = None,
    ) -> BlockState:
        """Record a completed attempt.

        Adds one attempt and the whole seconds since the block was last
        entered; both accumulate across visits.

        Returns:
            The updated block state.
        """
        state = self.store.get_block_state(run_id, block_id)
        if state is None:
            logger.warning("Completing block %s in run %s before it was entered", block_id, run_id)
            state = self.load_or_create(run_id, block_id)

        now = self.clock()
        entered_at = state.last_entered_at or state.started_at or now
        elapsed = max(0, math.floor((now - entered_at).total_seconds()))

        updated = self.store.update_block_state(
            state.id,
            status=promote_status(state.status, BlockStatus.COMPLETED),
            output_payload=output or {},
            score=score,
            weak_topics=weak_topics or [],
            attempts_count=state.attempts_count + 1,
            time_spent_seconds=state.time_spent_seconds + elapsed,
            completed_at=now,
            # A second completion without leaving the block counts from here
            last_entered_at=now,
        )
        logger.info(
            "Completed block %s in run %s (attempt %d, score=%s, +%ds)",
            block_id,
            run_id,
            updated.attempts_count,
            score,
            elapsed,
        )
        return updated

    def get(self, run_id: str, block_id: str) -> BlockState | None:
        return self.store.get_block_state(run_id, block_id)

    def list_for_run(self, run_id: str) -> list[BlockState]:
        return self.store.list_block_states(run_id)

    def clear(self, run_id: str) -> int:
        """Delete every block state of a run."""
        removed = self.store.delete_block_states(run_id)
        logger.info("Cleared %d block states for run %s", removed, run_id)
        return removed
