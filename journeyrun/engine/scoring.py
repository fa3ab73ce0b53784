"""Quiz scoring, checkpoint evaluation and completion statistics."""

import math
from typing import Any

from journeyrun.engine.conditions import evaluate_group
from journeyrun.models.graph import CheckpointContent, QuizContent
from journeyrun.models.records import (
    BlockState,
    BlockStatus,
    CheckpointResult,
    CheckpointVerdict,
    CompletionStats,
    QuizResult,
    RemediationContext,
    WrongQuestion,
)

EXCELLENT_SCORE = 70
PASSING_SCORE = 50
REPEATED_ATTEMPTS = 3

# Cosmetic pause before a checkpoint shows its result. Nothing waits on it.
CHECKPOINT_REVEAL_DELAY_MS = 1500


def round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def score_quiz(content: QuizContent, answers: dict[str, int]) -> QuizResult:
    """Score a quiz submission.

    Weak topics are the tags of every incorrectly answered question,
    deduplicated in the order they first appear.
    """
    correct_count = 0
    weak_topics: list[str] = []
    for question in content.questions:
        if answers.get(question.id) == question.correct_index:
            correct_count += 1
            continue
        for tag in question.tags:
            if tag not in weak_topics:
                weak_topics.append(tag)

    total_count = len(content.questions)
    score = round_half_up(100 * correct_count / total_count) if total_count else 0
    return QuizResult(
        score=score,
        correct_count=correct_count,
        total_count=total_count,
        answers=dict(answers),
        weak_topics=weak_topics,
        passed=score >= content.effective_passing_score,
    )


def wrong_questions(content: QuizContent, answers: dict[str, Any]) -> list[WrongQuestion]:
    wrong = []
    for question in content.questions:
        chosen = answers.get(question.id)
        if chosen == question.correct_index:
            continue
        if isinstance(chosen, int) and 0 <= chosen < len(question.choices):
            user_answer = question.choices[chosen]
        else:
            user_answer = "No answer"
        wrong.append(
            WrongQuestion(
                prompt=question.prompt,
                user_answer=user_answer,
                correct_answer=question.choices[question.correct_index],
                explanation=question.explanation,
            )
        )
    return wrong


def remediation_for_quiz(content: QuizContent, result: QuizResult) -> RemediationContext | None:
    """Build the remediation context after a quiz; None when it was passed."""
    if result.passed:
        return None
    return RemediationContext(
        weak_topics=result.weak_topics,
        wrong_questions=wrong_questions(content, result.answers),
    )


def remediation_from_state(content: QuizContent, state: BlockState) -> RemediationContext | None:
    """Rebuild the remediation context from a stored quiz attempt."""
    answers = state.output_payload.get("answers")
    if not isinstance(answers, dict) or state.output_payload.get("passed", True):
        return None
    return RemediationContext(
        weak_topics=list(state.weak_topics),
        wrong_questions=wrong_questions(content, answers),
    )


def evaluate_checkpoint(content: CheckpointContent, facts: dict[str, Any]) -> CheckpointResult:
    """Judge a checkpoint purely from facts already gathered.

    With evaluation criteria the criteria decide. Otherwise the carried quiz
    score does: >= 70 excellent, >= 50 good, below that needs review. With
    no score at all the learner passes.
    """
    score = facts.get("quiz.scorePercent")
    attempts = facts.get("block.attemptsCount")
    weak_topics = facts.get("quiz.weakTopics") or []

    if content.evaluation_criteria is not None:
        passed = evaluate_group(content.evaluation_criteria, facts)
        verdict = CheckpointVerdict.CRITERIA_MET if passed else CheckpointVerdict.CRITERIA_NOT_MET
    elif score is None:
        passed = True
        verdict = CheckpointVerdict.PROGRESS
    elif score >= EXCELLENT_SCORE:
        passed = True
        verdict = CheckpointVerdict.EXCELLENT
    elif score >= PASSING_SCORE:
        passed = True
        verdict = CheckpointVerdict.GOOD
    else:
        passed = False
        verdict = CheckpointVerdict.NEEDS_REVIEW

    result = CheckpointResult(passed=passed, verdict=verdict, score=score)
    if not passed:
        if attempts and attempts >= REPEATED_ATTEMPTS:
            result.attempts_count = attempts
        result.focus_topics = list(weak_topics)
    return result


def compute_completion_stats(states: list[BlockState]) -> CompletionStats:
    """Aggregate a run's block states into completion statistics.

    Scores that were never recorded are left out of the average.
    """
    total_time = sum(state.time_spent_seconds for state in states)
    scores = [state.score for state in states if state.score is not None]
    average = round_half_up(sum(scores) / len(scores)) if scores else 0
    return CompletionStats(
        total_time_seconds=total_time,
        blocks_completed=sum(1 for s in states if s.status == BlockStatus.COMPLETED),
        average_score=average,
    )
