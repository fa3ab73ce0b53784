"""Journey graph models: blocks, edges and edge conditions.

The graph is consumed verbatim in its camelCase wire shape:

    JourneyGraph   = {startBlockId, blocks: Block[], edges: Edge[]}
    Block          = {id, type, content}
    Edge           = {from, to, condition?, priority?, label?}
    ConditionGroup = {all?: Node[]} | {any?: Node[]}
    Condition      = {fact, op, value}

Block content is a tagged union keyed by the block type. Unknown types keep
their raw content in UnknownContent instead of failing validation.
"""

from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import (
    BaseModel,
    Discriminator,
    Field,
    Tag,
    ValidationError,
    field_serializer,
    model_validator,
)
from pydantic.alias_generators import to_camel

from journeyrun.errors import GraphIntegrityError


# -----------------------------------------------------------------------------
# Enums
# -----------------------------------------------------------------------------


class BlockType(str, Enum):
    """All block types the engine knows how to present."""

    READ = "read"
    VIDEO = "video"
    IMAGE = "image"
    QUIZ = "quiz"
    FORM = "form"
    MISSION = "mission"
    ANIMATION = "animation"
    AI_HELP = "ai_help"
    CHECKPOINT = "checkpoint"
    CODE = "code"
    EXERCISE = "exercise"
    RESOURCE = "resource"


class ConditionOp(str, Enum):
    """Comparison operators available to edge conditions."""

    EQ = "eq"
    NEQ = "neq"
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    CONTAINS = "contains"
    IN = "in"


class WireModel(BaseModel):
    """Base for models serialized in the camelCase wire shape."""

    model_config = {"populate_by_name": True, "alias_generator": to_camel}


# -----------------------------------------------------------------------------
# Conditions
# -----------------------------------------------------------------------------


class Condition(BaseModel):
    """A single comparison against a named fact."""

    fact: str
    op: ConditionOp
    value: Any = None


def _node_kind(value: Any) -> str:
    if isinstance(value, dict):
        return "condition" if "fact" in value else "group"
    return "condition" if isinstance(value, Condition) else "group"


ConditionNode = Annotated[
    Union[
        Annotated[Condition, Tag("condition")],
        Annotated["ConditionGroup", Tag("group")],
    ],
    Discriminator(_node_kind),
]


class ConditionGroup(BaseModel):
    """A boolean tree of conditions.

    When both keys are present, ``all`` wins. A group with neither key
    is vacuously true.
    """

    all: list[ConditionNode] | None = None
    any: list[ConditionNode] | None = None


ConditionGroup.model_rebuild()


# -----------------------------------------------------------------------------
# Block content variants
# -----------------------------------------------------------------------------


class ReadContent(WireModel):
    title: str
    markdown: str
    estimated_read_time: int | None = None


class VideoContent(WireModel):
    title: str
    url: str
    duration: int | None = None
    transcript: str | None = None


class ImageContent(WireModel):
    title: str
    url: str
    caption: str | None = None
    alt: str | None = None


class QuizQuestion(WireModel):
    """A multiple-choice question; tags name the topics it covers."""

    id: str
    prompt: str
    choices: list[str]
    correct_index: int
    explanation: str | None = None
    tags: list[str] = []


class QuizContent(WireModel):
    title: str
    description: str | None = None
    questions: list[QuizQuestion]
    passing_score: int | None = None
    allow_retry: bool | None = None
    shuffle_questions: bool | None = None
    shuffle_choices: bool | None = None

    @property
    def effective_passing_score(self) -> int:
        return self.passing_score if self.passing_score is not None else 50


class FormFieldValidation(WireModel):
    min_length: int | None = None
    max_length: int | None = None
    pattern: str | None = None


class FormField(WireModel):
    id: str
    type: Literal["text", "textarea", "select", "checkbox", "radio"]
    label: str
    placeholder: str | None = None
    options: list[str] | None = None
    required: bool | None = None
    validation: FormFieldValidation | None = None


class FormContent(WireModel):
    title: str
    description: str | None = None
    fields: list[FormField]
    submit_label: str | None = None


class MissionStep(WireModel):
    id: str
    instruction: str
    verification_method: Literal["self_report", "screenshot", "url_check"] | None = None


class MissionContent(WireModel):
    title: str
    description: str | None = None
    steps: list[MissionStep]
    external_url: str | None = None
    completion_message: str | None = None


class AnimationContent(WireModel):
    title: str
    animation_type: Literal["lottie", "video", "interactive"]
    url: str
    autoplay: bool | None = None
    loop: bool | None = None


class AIHelpContent(WireModel):
    title: str
    mode: Literal["targeted_remediation", "open_chat", "guided_explanation"]
    context_from_blocks: list[str] | None = None
    max_turns: int | None = None


class CheckpointContent(WireModel):
    title: str
    description: str | None = None
    evaluation_criteria: ConditionGroup | None = None


class CodeContent(WireModel):
    title: str
    language: str
    code: str
    explanation: str | None = None
    show_line_numbers: bool | None = None


class ExerciseContent(WireModel):
    title: str
    instructions: str
    hints: list[str] | None = None
    solution: str | None = None


class ResourceItem(WireModel):
    id: str
    title: str
    type: Literal["link", "download", "video", "document"]
    url: str
    description: str | None = None


class ResourceContent(WireModel):
    title: str
    description: str | None = None
    resources: list[ResourceItem]


class UnknownContent(BaseModel):
    """Raw content of a block whose type the engine does not know."""

    data: dict[str, Any] = {}


BlockContent = Union[
    ReadContent,
    VideoContent,
    ImageContent,
    QuizContent,
    FormContent,
    MissionContent,
    AnimationContent,
    AIHelpContent,
    CheckpointContent,
    CodeContent,
    ExerciseContent,
    ResourceContent,
    UnknownContent,
]

CONTENT_MODELS: dict[BlockType, type[BaseModel]] = {
    BlockType.READ: ReadContent,
    BlockType.VIDEO: VideoContent,
    BlockType.IMAGE: ImageContent,
    BlockType.QUIZ: QuizContent,
    BlockType.FORM: FormContent,
    BlockType.MISSION: MissionContent,
    BlockType.ANIMATION: AnimationContent,
    BlockType.AI_HELP: AIHelpContent,
    BlockType.CHECKPOINT: CheckpointContent,
    BlockType.CODE: CodeContent,
    BlockType.EXERCISE: ExerciseContent,
    BlockType.RESOURCE: ResourceContent,
}


# -----------------------------------------------------------------------------
# Blocks and edges
# -----------------------------------------------------------------------------


class BlockUI(BaseModel):
    layout: Literal["default", "fullscreen", "split"] | None = None
    theme: Literal["light", "dark"] | None = None


class Block(BaseModel):
    """One step of a journey.

    ``type`` stays a plain string so graphs authored with newer block types
    still load; ``kind`` is None for those.
    """

    id: str
    type: str
    content: BlockContent
    ui: BlockUI | None = None

    @model_validator(mode="before")
    @classmethod
    def _parse_content(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        content = data.get("content") or {}
        if not isinstance(content, dict):
            return data
        try:
            model_cls = CONTENT_MODELS.get(BlockType(data.get("type")))
        except ValueError:
            model_cls = None
        if model_cls is None:
            parsed = UnknownContent(data=content)
        else:
            parsed = model_cls.model_validate(content)
        return {**data, "content": parsed}

    @field_serializer("content")
    def _dump_content(self, content: BaseModel) -> dict[str, Any]:
        if isinstance(content, UnknownContent):
            return content.data
        return content.model_dump(by_alias=True, exclude_none=True)

    @property
    def kind(self) -> BlockType | None:
        """The known block type, or None for an unknown one."""
        try:
            return BlockType(self.type)
        except ValueError:
            return None

    @property
    def title(self) -> str | None:
        return getattr(self.content, "title", None)


class Edge(BaseModel):
    """A possible transition between two blocks."""

    model_config = {"populate_by_name": True}

    id: str | None = None
    from_: str = Field(alias="from")
    to: str
    condition: ConditionGroup | None = None
    priority: float | None = None
    label: str | None = None

    @property
    def effective_priority(self) -> float:
        return self.priority if self.priority is not None else 0


class JourneyGraph(WireModel):
    """A journey definition: blocks, conditional edges and a start block."""

    start_block_id: str
    blocks: list[Block]
    edges: list[Edge] = []

    def get_block(self, block_id: str | None) -> Block | None:
        for block in self.blocks:
            if block.id == block_id:
                return block
        return None

    def outgoing(self, block_id: str) -> list[Edge]:
        """Edges leaving a block, in declaration order."""
        return [edge for edge in self.edges if edge.from_ == block_id]

    def integrity_problems(self) -> list[str]:
        """List structural problems; empty when the graph is sound."""
        problems = []
        seen: set[str] = set()
        for block in self.blocks:
            if block.id in seen:
                problems.append(f"Duplicate block id: {block.id}")
            seen.add(block.id)
            if isinstance(block.content, QuizContent):
                for question in block.content.questions:
                    if not 0 <= question.correct_index < len(question.choices):
                        problems.append(
                            f"Block {block.id} question {question.id} has correctIndex "
                            f"{question.correct_index} outside its {len(question.choices)} choices"
                        )

        if self.start_block_id not in seen:
            problems.append(f"Start block not found: {self.start_block_id}")

        for index, edge in enumerate(self.edges):
            name = edge.id or f"#{index}"
            if edge.from_ not in seen:
                problems.append(f"Edge {name} has dangling source: {edge.from_}")
            if edge.to not in seen:
                problems.append(f"Edge {name} has dangling target: {edge.to}")
        return problems

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


def load_graph(data: dict[str, Any] | JourneyGraph) -> JourneyGraph:
    """Validate a journey graph and check its integrity.

    Raises:
        GraphIntegrityError: If the shape is invalid or ids don't line up.
    """
    if isinstance(data, JourneyGraph):
        graph = data
    else:
        try:
            graph = JourneyGraph.model_validate(data)
        except ValidationError as e:
            problems = [
                f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}"
                for err in e.errors()
            ]
            raise GraphIntegrityError(problems) from e

    problems = graph.integrity_problems()
    if problems:
        raise GraphIntegrityError(problems)
    return graph
