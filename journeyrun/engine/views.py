"""Presentation payloads handed to block renderers.

``describe_block`` handles every content variant explicitly; a block of an
unknown type gets a fallback view rather than an error.
"""

from typing import Any

from pydantic import BaseModel

from journeyrun.engine.scoring import (
    CHECKPOINT_REVEAL_DELAY_MS,
    evaluate_checkpoint,
    round_half_up,
)
from journeyrun.models.graph import (
    AIHelpContent,
    AnimationContent,
    Block,
    CheckpointContent,
    CodeContent,
    ExerciseContent,
    FormContent,
    ImageContent,
    JourneyGraph,
    MissionContent,
    QuizContent,
    ReadContent,
    ResourceContent,
    UnknownContent,
    VideoContent,
)
from journeyrun.models.machine import Active, SessionState
from journeyrun.models.records import (
    BlockState,
    BlockStatus,
    CompletionStats,
    NextModule,
    QuizResult,
    RemediationContext,
    Run,
)


class BlockView(BaseModel):
    """What a renderer needs to draw one block."""

    block_id: str
    type: str
    title: str | None = None
    content: dict[str, Any] = {}
    is_completed: bool = False
    previous_output: dict[str, Any] | None = None
    previous_attempt: QuizResult | None = None
    checkpoint: dict[str, Any] | None = None
    remediation: RemediationContext | None = None
    fallback_message: str | None = None


class Progress(BaseModel):
    completed: int
    total: int


class SessionView(BaseModel):
    """The whole session as the API returns it."""

    run: Run
    state: str
    block: BlockView | None = None
    submitting: bool = False
    progress: Progress
    stats: CompletionStats | None = None
    next_module: NextModule | None = None
    error: str | None = None


def _previous_quiz_attempt(content: QuizContent, state: BlockState) -> QuizResult | None:
    answers = state.output_payload.get("answers")
    if not isinstance(answers, dict):
        return None
    # Output posted through the generic completion path may hold anything
    if not all(isinstance(v, int) and not isinstance(v, bool) for v in answers.values()):
        return None
    score = state.score or 0
    total = len(content.questions)
    return QuizResult(
        score=round_half_up(score),
        correct_count=round_half_up(score / 100 * total),
        total_count=total,
        answers=answers,
        weak_topics=list(state.weak_topics),
        passed=score >= content.effective_passing_score,
    )


def describe_block(
    block: Block,
    state: BlockState,
    carried_facts: dict[str, Any] | None = None,
    remediation: RemediationContext | None = None,
) -> BlockView:
    """Build the view for a block given its stored state."""
    content = block.content
    view = BlockView(
        block_id=block.id,
        type=block.type,
        title=block.title,
        content=block.model_dump(mode="json")["content"],
        is_completed=state.status == BlockStatus.COMPLETED,
    )

    if isinstance(content, (ReadContent, VideoContent, ImageContent, AnimationContent, CodeContent)):
        pass
    elif isinstance(content, QuizContent):
        view.previous_attempt = _previous_quiz_attempt(content, state)
    elif isinstance(content, (FormContent, MissionContent, ExerciseContent, ResourceContent)):
        view.previous_output = state.output_payload or None
    elif isinstance(content, AIHelpContent):
        view.previous_output = state.output_payload or None
        view.remediation = remediation
    elif isinstance(content, CheckpointContent):
        result = evaluate_checkpoint(content, carried_facts or {})
        view.checkpoint = {
            "result": result.model_dump(mode="json"),
            "reveal_delay_ms": CHECKPOINT_REVEAL_DELAY_MS,
        }
    elif isinstance(content, UnknownContent):
        view.fallback_message = f"Unknown block type: {block.type}"
    else:
        raise TypeError(f"Unhandled block content: {type(content).__name__}")

    return view


def build_session_view(
    graph: JourneyGraph,
    run: Run,
    state: SessionState,
    block_states: list[BlockState],
) -> SessionView:
    """Combine the run, the session state and stored progress into one view."""
    completed = sum(1 for s in block_states if s.status == BlockStatus.COMPLETED)
    view = SessionView(
        run=run,
        state=state.kind,
        progress=Progress(completed=completed, total=len(graph.blocks)),
    )

    if isinstance(state, Active):
        block = graph.get_block(state.block_id)
        if block is not None:
            view.block = describe_block(
                block, state.block_state, state.carried_facts, state.remediation
            )
        view.submitting = state.submitting
    elif state.kind == "finished":
        view.stats = state.stats
        view.next_module = state.next_module
    elif state.kind == "error":
        view.error = state.message

    return view
