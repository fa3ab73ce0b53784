"""Run tracker - one user's traversal of one journey."""

import logging
from collections.abc import Callable
from datetime import datetime

from journeyrun.errors import RecordNotFoundError
from journeyrun.models.records import CompletionStats, Run, RunStatus, new_id, utcnow
from journeyrun.store.sqlite_store import JourneyStore

logger = logging.getLogger(__name__)


class RunTracker:
    """Creates, loads, advances, finalizes and restarts runs."""

    def __init__(self, store: JourneyStore, clock: Callable[[], datetime] = utcnow):
        self.store = store
        self.clock = clock

    def load_or_create_active_run(
        self, user_id: str, journey_id: str, start_block_id: str
    ) -> Run:
        """Return the user's active run for the journey, starting one if needed."""
        run = self.store.get_active_run(user_id, journey_id)
        if run is not None:
            return run

        run = self.store.create_run(
            Run(
                id=new_id(),
                user_id=user_id,
                journey_id=journey_id,
                current_block_id=start_block_id,
                status=RunStatus.IN_PROGRESS,
                started_at=self.clock(),
            )
        )
        logger.info("Started run %s for user %s on journey %s", run.id, user_id, journey_id)
        return run

    def get(self, run_id: str) -> Run:
        """Load a run by id.

        Raises:
            RecordNotFoundError: If the run doesn't exist.
        """
        run = self.store.get_run(run_id)
        if run is None:
            raise RecordNotFoundError(f"Run not found: {run_id}")
        return run

    def advance_pointer(self, run_id: str, block_id: str) -> Run:
        """Point the run at a block before it is presented."""
        return self.store.update_run(run_id, current_block_id=block_id)

    def finalize(self, run_id: str, stats: CompletionStats) -> CompletionStats:
        """Mark the run completed and hand back its statistics."""
        self.store.update_run(
            run_id,
            status=RunStatus.COMPLETED,
            completed_at=self.clock(),
        )
        logger.info(
            "Finished run %s: %d blocks, avg score %d, %ds",
            run_id,
            stats.blocks_completed,
            stats.average_score,
            stats.total_time_seconds,
        )
        return stats

    def restart(self, run_id: str, start_block_id: str) -> Run:
        """Wipe the run's progress and put it back at the start block.

        Idempotent: a second call leaves the same end state. A restart that
        fails leaves the run and its block states as they were.
        """
        run = self.store.restart_run(run_id, start_block_id)
        logger.info("Restarted run %s at %s", run_id, start_block_id)
        return run

    def abandon(self, run_id: str) -> Run:
        """Give up on an active run so a fresh one can be started."""
        run = self.get(run_id)
        if not run.is_active:
            return run
        logger.info("Abandoned run %s", run_id)
        return self.store.update_run(run_id, status=RunStatus.ABANDONED)
