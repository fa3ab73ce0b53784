"""Persisted records and derived results.

- Run: one user's traversal of one journey
- BlockState: the attempt record for one block within one run
- JourneyRecord / ModuleRecord: stored journey definitions and their modules
- QuizResult, CheckpointResult, RemediationContext, CompletionStats:
  values the engine derives from the records above
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any

import ulid
from pydantic import BaseModel

from journeyrun.models.graph import JourneyGraph


def new_id() -> str:
    """Generate a sortable unique id."""
    return str(ulid.new())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# -----------------------------------------------------------------------------
# Enums
# -----------------------------------------------------------------------------


class RunStatus(str, Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    ABANDONED = "abandoned"


ACTIVE_RUN_STATUSES = (RunStatus.NOT_STARTED, RunStatus.IN_PROGRESS)


class BlockStatus(str, Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


_STATUS_RANK = {
    BlockStatus.NOT_STARTED: 0,
    BlockStatus.IN_PROGRESS: 1,
    BlockStatus.FAILED: 2,
    BlockStatus.SKIPPED: 2,
    BlockStatus.COMPLETED: 3,
}


def promote_status(current: BlockStatus, target: BlockStatus) -> BlockStatus:
    """Return the later of two statuses; block status never moves back."""
    if _STATUS_RANK[target] >= _STATUS_RANK[current]:
        return target
    return current


class JourneyStatus(str, Enum):
    DRAFT = "draft"
    PUBLISHED = "published"
    ARCHIVED = "archived"


# -----------------------------------------------------------------------------
# Persisted records
# -----------------------------------------------------------------------------


class Run(BaseModel):
    """A single user's traversal of a journey graph."""

    id: str
    user_id: str
    journey_id: str
    current_block_id: str | None = None
    status: RunStatus = RunStatus.IN_PROGRESS
    started_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_RUN_STATUSES


class BlockState(BaseModel):
    """The attempt record for one block within one run.

    Unique per (run_id, block_id). Attempts and time spent accumulate
    across visits.
    """

    id: str
    run_id: str
    block_id: str
    status: BlockStatus = BlockStatus.NOT_STARTED
    attempts_count: int = 0
    output_payload: dict[str, Any] = {}
    score: float | None = None
    weak_topics: list[str] = []
    time_spent_seconds: int = 0
    started_at: datetime | None = None
    completed_at: datetime | None = None
    last_entered_at: datetime | None = None


class JourneyRecord(BaseModel):
    """A stored journey version with its graph."""

    journey_id: str
    module_id: str | None = None
    version: int = 1
    status: JourneyStatus = JourneyStatus.DRAFT
    graph: JourneyGraph


class ModuleRecord(BaseModel):
    """A module within a track; modules are ordered by order_index."""

    module_id: str
    track_id: str
    title: str
    order_index: int


class NextModule(BaseModel):
    """The published successor of a finished module."""

    version_id: str
    title: str


# -----------------------------------------------------------------------------
# Derived results
# -----------------------------------------------------------------------------


class CompletionStats(BaseModel):
    total_time_seconds: int = 0
    blocks_completed: int = 0
    average_score: int = 0


class QuizResult(BaseModel):
    score: int
    correct_count: int
    total_count: int
    answers: dict[str, int]
    weak_topics: list[str]
    passed: bool


class WrongQuestion(BaseModel):
    prompt: str
    user_answer: str
    correct_answer: str
    explanation: str | None = None


class RemediationContext(BaseModel):
    """What a remediation (ai_help) block gets to work with."""

    weak_topics: list[str] = []
    wrong_questions: list[WrongQuestion] = []


class CheckpointVerdict(str, Enum):
    EXCELLENT = "excellent"
    GOOD = "good"
    NEEDS_REVIEW = "needs_review"
    PROGRESS = "progress"
    CRITERIA_MET = "criteria_met"
    CRITERIA_NOT_MET = "criteria_not_met"


class CheckpointResult(BaseModel):
    passed: bool
    verdict: CheckpointVerdict
    score: float | None = None
    attempts_count: int | None = None
    focus_topics: list[str] = []
