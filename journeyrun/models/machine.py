"""Session states, events and effects for the journey state machine.

States:  Loading -> {Errored, Active}; Active -> Active | Finished
Events:  what happened (a learner action, or the result of an effect)
Effects: I/O the orchestrator must perform, each answered by one event
"""

from typing import Any, Literal, Union

from pydantic import BaseModel

from journeyrun.models.records import (
    BlockState,
    CompletionStats,
    NextModule,
    RemediationContext,
)


# -----------------------------------------------------------------------------
# States
# -----------------------------------------------------------------------------


class Loading(BaseModel):
    kind: Literal["loading"] = "loading"


class Errored(BaseModel):
    kind: Literal["error"] = "error"
    message: str
    retryable: bool = True


class Active(BaseModel):
    """A block is on screen.

    carried_facts are the facts of the last completed block; a checkpoint
    judges the learner on them.
    """

    kind: Literal["active"] = "active"
    block_id: str
    block_state: BlockState
    submitting: bool = False
    carried_facts: dict[str, Any] = {}
    remediation: RemediationContext | None = None


class Finished(BaseModel):
    kind: Literal["finished"] = "finished"
    stats: CompletionStats
    next_module: NextModule | None = None


SessionState = Union[Loading, Errored, Active, Finished]


# -----------------------------------------------------------------------------
# Events
# -----------------------------------------------------------------------------


class RunLoaded(BaseModel):
    kind: Literal["run_loaded"] = "run_loaded"
    block_state: BlockState
    carried_facts: dict[str, Any] = {}
    remediation: RemediationContext | None = None


class LoadFailed(BaseModel):
    kind: Literal["load_failed"] = "load_failed"
    message: str
    retryable: bool = True


class CompletionSubmitted(BaseModel):
    kind: Literal["completion_submitted"] = "completion_submitted"
    block_id: str
    output: dict[str, Any] | None = None
    score: float | None = None
    weak_topics: list[str] | None = None


class QuizSubmitted(BaseModel):
    kind: Literal["quiz_submitted"] = "quiz_submitted"
    block_id: str
    answers: dict[str, int]


class CheckpointSubmitted(BaseModel):
    kind: Literal["checkpoint_submitted"] = "checkpoint_submitted"
    block_id: str


class BlockCompleted(BaseModel):
    kind: Literal["block_completed"] = "block_completed"
    block_state: BlockState


class BlockEntered(BaseModel):
    kind: Literal["block_entered"] = "block_entered"
    block_state: BlockState


class RunFinalized(BaseModel):
    kind: Literal["run_finalized"] = "run_finalized"
    stats: CompletionStats
    next_module: NextModule | None = None


class RestartRequested(BaseModel):
    kind: Literal["restart_requested"] = "restart_requested"


class EffectFailed(BaseModel):
    kind: Literal["effect_failed"] = "effect_failed"
    message: str


Event = Union[
    RunLoaded,
    LoadFailed,
    CompletionSubmitted,
    QuizSubmitted,
    CheckpointSubmitted,
    BlockCompleted,
    BlockEntered,
    RunFinalized,
    RestartRequested,
    EffectFailed,
]


# -----------------------------------------------------------------------------
# Effects
# -----------------------------------------------------------------------------


class CompleteBlock(BaseModel):
    kind: Literal["complete_block"] = "complete_block"
    block_id: str
    output: dict[str, Any] = {}
    score: float | None = None
    weak_topics: list[str] = []


class EnterBlock(BaseModel):
    kind: Literal["enter_block"] = "enter_block"
    block_id: str


class FinalizeRun(BaseModel):
    kind: Literal["finalize_run"] = "finalize_run"


class RestartRun(BaseModel):
    kind: Literal["restart_run"] = "restart_run"


Effect = Union[CompleteBlock, EnterBlock, FinalizeRun, RestartRun]
