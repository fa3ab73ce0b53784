"""The journey state machine.

``transition`` is pure: given the graph, the current session state and an
event, it returns the next state and the effects the orchestrator must
perform. All routing decisions (facts, edge resolution, quiz scoring,
checkpoint judgement) happen here; all I/O happens in the orchestrator.

Transitions:
    Loading  --RunLoaded-->              Active
    Loading  --LoadFailed-->             Errored
    Loading  --RunFinalized-->           Finished      (already-completed run)
    Active   --CompletionSubmitted-->    Active(submitting) + CompleteBlock
    Active   --QuizSubmitted-->          Active(submitting) + CompleteBlock
    Active   --CheckpointSubmitted-->    Active(submitting) + CompleteBlock
    Active   --BlockCompleted-->         Active(submitting) + EnterBlock | FinalizeRun
    Active   --BlockEntered-->           Active(next block)
    Active   --RunFinalized-->           Finished
    Active   --EffectFailed-->           Active(not submitting)
    Loading  --EffectFailed-->           Errored
    any      --RestartRequested-->       Loading + RestartRun

Any other combination is ignored: the state is returned unchanged and no
effects are produced.
"""

from journeyrun.engine.facts import facts_for_state
from journeyrun.engine.resolver import find_next_block
from journeyrun.engine.scoring import evaluate_checkpoint, remediation_for_quiz, score_quiz
from journeyrun.models.graph import CheckpointContent, JourneyGraph, QuizContent
from journeyrun.models.machine import (
    Active,
    BlockCompleted,
    BlockEntered,
    CheckpointSubmitted,
    CompleteBlock,
    CompletionSubmitted,
    Effect,
    EffectFailed,
    EnterBlock,
    Errored,
    Event,
    FinalizeRun,
    Finished,
    LoadFailed,
    Loading,
    QuizSubmitted,
    RestartRequested,
    RestartRun,
    RunFinalized,
    RunLoaded,
    SessionState,
)

Transition = tuple[SessionState, list[Effect]]


def transition(graph: JourneyGraph | None, state: SessionState, event: Event) -> Transition:
    """Compute the next session state and the effects to perform.

    The graph may be None only while nothing has been loaded yet.
    """
    if isinstance(event, RestartRequested):
        return Loading(), [RestartRun()]

    if isinstance(state, Loading):
        return _from_loading(state, event)

    if isinstance(state, Active):
        return _from_active(graph, state, event)

    return state, []


def _from_loading(state: Loading, event: Event) -> Transition:
    if isinstance(event, RunLoaded):
        return (
            Active(
                block_id=event.block_state.block_id,
                block_state=event.block_state,
                carried_facts=event.carried_facts,
                remediation=event.remediation,
            ),
            [],
        )
    if isinstance(event, LoadFailed):
        return Errored(message=event.message, retryable=event.retryable), []
    if isinstance(event, EffectFailed):
        return Errored(message=event.message), []
    if isinstance(event, RunFinalized):
        return Finished(stats=event.stats, next_module=event.next_module), []
    return state, []


def _from_active(graph: JourneyGraph, state: Active, event: Event) -> Transition:
    if isinstance(event, (CompletionSubmitted, QuizSubmitted, CheckpointSubmitted)):
        if state.submitting or event.block_id != state.block_id:
            return state, []
        return _submit(graph, state, event)

    if isinstance(event, BlockCompleted):
        return _route(graph, state, event)

    if isinstance(event, BlockEntered):
        return (
            Active(
                block_id=event.block_state.block_id,
                block_state=event.block_state,
                carried_facts=state.carried_facts,
                remediation=state.remediation,
            ),
            [],
        )

    if isinstance(event, RunFinalized):
        return Finished(stats=event.stats, next_module=event.next_module), []

    if isinstance(event, EffectFailed):
        return state.model_copy(update={"submitting": False}), []

    return state, []


def _submit(
    graph: JourneyGraph,
    state: Active,
    event: CompletionSubmitted | QuizSubmitted | CheckpointSubmitted,
) -> Transition:
    block = graph.get_block(state.block_id)
    content = block.content if block is not None else None
    remediation = state.remediation

    if isinstance(event, QuizSubmitted) and isinstance(content, QuizContent):
        result = score_quiz(content, event.answers)
        remediation = remediation_for_quiz(content, result)
        effect = CompleteBlock(
            block_id=state.block_id,
            output={"answers": result.answers, "passed": result.passed},
            score=result.score,
            weak_topics=result.weak_topics,
        )
    elif isinstance(event, CheckpointSubmitted) and isinstance(content, CheckpointContent):
        result = evaluate_checkpoint(content, state.carried_facts)
        effect = CompleteBlock(
            block_id=state.block_id,
            output={"passed": result.passed},
            score=100 if result.passed else 0,
        )
    elif isinstance(event, CompletionSubmitted):
        effect = CompleteBlock(
            block_id=state.block_id,
            output=event.output or {},
            score=event.score,
            weak_topics=event.weak_topics or [],
        )
    else:
        # Quiz answers for a non-quiz block, or the like
        return state, []

    return (
        state.model_copy(update={"submitting": True, "remediation": remediation}),
        [effect],
    )


def _route(graph: JourneyGraph, state: Active, event: BlockCompleted) -> Transition:
    facts = facts_for_state(graph, event.block_state)
    next_block_id = find_next_block(state.block_id, graph.edges, facts)
    pending = state.model_copy(
        update={"block_state": event.block_state, "carried_facts": facts}
    )
    if next_block_id is None:
        return pending, [FinalizeRun()]
    return pending, [EnterBlock(block_id=next_block_id)]
