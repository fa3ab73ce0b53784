"""Fact builder - turns a block's completion data into named facts.

Facts are rebuilt on every evaluation and never stored. Known keys:
quiz.scorePercent, quiz.weakTopics, quiz.correctCount, quiz.totalCount,
block.attemptsCount, block.timeSpentSeconds, block.status, plus one
``output.<key>`` per key of the block's output payload.
"""

from typing import Any

from pydantic import BaseModel

from journeyrun.engine.conditions import Facts
from journeyrun.engine.scoring import round_half_up
from journeyrun.models.graph import JourneyGraph, QuizContent
from journeyrun.models.records import BlockState, BlockStatus


class FactSnapshot(BaseModel):
    """The parts of a block attempt that facts are derived from."""

    score: float | None = None
    weak_topics: list[str] | None = None
    attempts_count: int | None = None
    time_spent_seconds: int | None = None
    status: BlockStatus | None = None
    output_payload: dict[str, Any] | None = None

    @classmethod
    def from_block_state(cls, state: BlockState) -> "FactSnapshot":
        return cls(
            score=state.score,
            weak_topics=state.weak_topics,
            attempts_count=state.attempts_count,
            time_spent_seconds=state.time_spent_seconds,
            status=state.status,
            output_payload=state.output_payload,
        )


def build_facts(
    snapshot: FactSnapshot,
    quiz: QuizContent | None = None,
    extra: Facts | None = None,
) -> Facts:
    """Build the fact set for one block attempt.

    Args:
        snapshot: The attempt data.
        quiz: The block's quiz content, for quiz blocks only.
        extra: Application-defined facts, merged in last.

    Returns:
        A fresh facts mapping.
    """
    facts: Facts = {}

    if snapshot.score is not None:
        facts["quiz.scorePercent"] = snapshot.score

    if snapshot.weak_topics:
        facts["quiz.weakTopics"] = list(snapshot.weak_topics)

    if quiz is not None:
        total_count = len(quiz.questions)
        facts["quiz.totalCount"] = total_count
        if snapshot.score is not None:
            facts["quiz.correctCount"] = round_half_up(snapshot.score / 100 * total_count)

    if snapshot.attempts_count is not None:
        facts["block.attemptsCount"] = snapshot.attempts_count

    if snapshot.time_spent_seconds is not None:
        facts["block.timeSpentSeconds"] = snapshot.time_spent_seconds

    if snapshot.status is not None:
        facts["block.status"] = snapshot.status.value

    for key, value in (snapshot.output_payload or {}).items():
        facts[f"output.{key}"] = value

    if extra:
        facts.update(extra)

    return facts


def facts_for_state(graph: JourneyGraph, state: BlockState) -> Facts:
    """Facts for a stored block state, with quiz content when it is a quiz."""
    block = graph.get_block(state.block_id)
    quiz = block.content if block is not None and isinstance(block.content, QuizContent) else None
    return build_facts(FactSnapshot.from_block_state(state), quiz)
