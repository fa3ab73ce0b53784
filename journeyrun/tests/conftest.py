"""Shared fixtures: in-memory stores, a controllable clock and sample graphs."""

from datetime import datetime, timedelta, timezone

import pytest

from journeyrun.models.graph import load_graph
from journeyrun.models.records import JourneyRecord, JourneyStatus
from journeyrun.store.sqlite_store import JourneyStore


class FakeClock:
    """A clock that only moves when told to."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2024, 1, 1, 9, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


def quiz_block(block_id: str = "A", passing_score: int | None = 50) -> dict:
    """A two-question quiz; q1 is tagged loops, q2 functions and loops."""
    content = {
        "title": "Python basics",
        "questions": [
            {
                "id": "q1",
                "prompt": "What does range(3) yield?",
                "choices": ["0,1,2", "1,2,3"],
                "correctIndex": 0,
                "explanation": "range starts at zero.",
                "tags": ["loops"],
            },
            {
                "id": "q2",
                "prompt": "What keyword defines a function?",
                "choices": ["func", "def", "fn"],
                "correctIndex": 1,
                "tags": ["functions", "loops"],
            },
        ],
    }
    if passing_score is not None:
        content["passingScore"] = passing_score
    return {"id": block_id, "type": "quiz", "content": content}


def remediation_graph() -> dict:
    """A(quiz) -> B(mission) when passed, A -> C(ai_help) when failed, C -> A."""
    return {
        "startBlockId": "A",
        "blocks": [
            quiz_block("A"),
            {
                "id": "B",
                "type": "mission",
                "content": {
                    "title": "Ship it",
                    "steps": [{"id": "s1", "instruction": "Push your branch"}],
                },
            },
            {
                "id": "C",
                "type": "ai_help",
                "content": {"title": "Let's review", "mode": "targeted_remediation"},
            },
        ],
        "edges": [
            {
                "from": "A",
                "to": "B",
                "condition": {"all": [{"fact": "quiz.scorePercent", "op": "gte", "value": 50}]},
            },
            {
                "from": "A",
                "to": "C",
                "condition": {"all": [{"fact": "quiz.scorePercent", "op": "lt", "value": 50}]},
            },
            {"from": "C", "to": "A"},
        ],
    }


def linear_graph() -> dict:
    """read -> quiz -> checkpoint, no branching."""
    return {
        "startBlockId": "intro",
        "blocks": [
            {"id": "intro", "type": "read", "content": {"title": "Intro", "markdown": "# Hi"}},
            quiz_block("quiz"),
            {"id": "check", "type": "checkpoint", "content": {"title": "How did it go?"}},
        ],
        "edges": [
            {"from": "intro", "to": "quiz"},
            {"from": "quiz", "to": "check"},
        ],
    }


@pytest.fixture
def store():
    """Create an in-memory store for testing."""
    s = JourneyStore(":memory:")
    yield s
    s.close()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def remediation_journey(store: JourneyStore) -> JourneyRecord:
    record = JourneyRecord(
        journey_id="j_remediation",
        status=JourneyStatus.PUBLISHED,
        graph=load_graph(remediation_graph()),
    )
    return store.save_journey(record)


@pytest.fixture
def linear_journey(store: JourneyStore) -> JourneyRecord:
    record = JourneyRecord(
        journey_id="j_linear",
        status=JourneyStatus.PUBLISHED,
        graph=load_graph(linear_graph()),
    )
    return store.save_journey(record)


@pytest.fixture
def quiz_data() -> dict:
    return quiz_block("A")


@pytest.fixture
def remediation_data() -> dict:
    return remediation_graph()


@pytest.fixture
def linear_data() -> dict:
    return linear_graph()
