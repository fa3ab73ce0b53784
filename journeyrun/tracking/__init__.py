"""Persistent run and block-state tracking."""

from journeyrun.tracking.block_states import BlockStateTracker
from journeyrun.tracking.runs import RunTracker

__all__ = ["BlockStateTracker", "RunTracker"]
