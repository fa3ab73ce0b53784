"""journeyrun data models."""

from journeyrun.models.graph import (
    Block,
    BlockType,
    Condition,
    ConditionGroup,
    ConditionOp,
    Edge,
    JourneyGraph,
    load_graph,
    # Content variants
    ReadContent,
    VideoContent,
    ImageContent,
    QuizContent,
    QuizQuestion,
    FormContent,
    MissionContent,
    AnimationContent,
    AIHelpContent,
    CheckpointContent,
    CodeContent,
    ExerciseContent,
    ResourceContent,
    UnknownContent,
)
from journeyrun.models.records import (
    Run,
    RunStatus,
    BlockState,
    BlockStatus,
    JourneyRecord,
    JourneyStatus,
    ModuleRecord,
    NextModule,
    CompletionStats,
    QuizResult,
    CheckpointResult,
    RemediationContext,
)

__all__ = [
    # Graph
    "Block",
    "BlockType",
    "Condition",
    "ConditionGroup",
    "ConditionOp",
    "Edge",
    "JourneyGraph",
    "load_graph",
    # Content
    "ReadContent",
    "VideoContent",
    "ImageContent",
    "QuizContent",
    "QuizQuestion",
    "FormContent",
    "MissionContent",
    "AnimationContent",
    "AIHelpContent",
    "CheckpointContent",
    "CodeContent",
    "ExerciseContent",
    "ResourceContent",
    "UnknownContent",
    # Records
    "Run",
    "RunStatus",
    "BlockState",
    "BlockStatus",
    "JourneyRecord",
    "JourneyStatus",
    "ModuleRecord",
    "NextModule",
    "CompletionStats",
    "QuizResult",
    "CheckpointResult",
    "RemediationContext",
]
