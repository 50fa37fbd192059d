"""
Pydantic models for the Gantt data layer.

Defines the persisted Task and Link records, the partial update records used by
the stores and the mutation engine, and the request/response envelopes of the
REST adapter.
"""

from datetime import date, datetime
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Type, TypeVar, Union

from pydantic import BaseModel, BeforeValidator, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from .errors import ValidationError

# Parent id of top-level tasks; never assigned to a stored row
ROOT_ID = 0

# Wire format of task start dates
DATE_FORMAT = "%Y-%m-%d %H:%M"

_ACCEPTED_DATE_FORMATS = (
    DATE_FORMAT,
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d",
    "%d-%m-%Y %H:%M",
    "%d-%m-%Y",
)


def coerce_fuzzy_int(value: Any) -> int:
    """
    Coerce a client-supplied identifier into an int.

    Gantt clients send ids as numbers, numeric strings or empty values; empty
    values (None, "") read as the root sentinel.
    """
    if value is None or value == "":
        return ROOT_ID
    if isinstance(value, bool):
        raise ValueError("boolean is not a valid id")
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if value.is_integer():
            return int(value)
        raise ValueError(f"{value!r} is not an integer id")
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            raise ValueError(f"{value!r} is not an integer id")
    raise ValueError(f"Unsupported id type: {type(value).__name__}")


# Identifier that tolerates strings and empty values
FuzzyInt = Annotated[int, BeforeValidator(coerce_fuzzy_int)]


def normalize_start_date(value: Any) -> Optional[str]:
    """Normalize supported date inputs to DATE_FORMAT."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.strftime(DATE_FORMAT)
    if isinstance(value, date):
        return datetime.combine(value, datetime.min.time()).strftime(DATE_FORMAT)

    text = str(value).strip()
    for fmt in _ACCEPTED_DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).strftime(DATE_FORMAT)
        except ValueError:
            continue
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).strftime(DATE_FORMAT)
    except ValueError:
        raise ValueError(f"Unrecognised start_date '{value}'")


class TaskType(str, Enum):
    """Kinds of Gantt rows."""

    TASK = "task"
    PROJECT = "project"
    MILESTONE = "milestone"


class LinkType(str, Enum):
    """Dependency link kinds."""

    FINISH_TO_START = "fs"
    START_TO_START = "ss"
    FINISH_TO_FINISH = "ff"
    START_TO_FINISH = "sf"


# Numeric codes and long names accepted for link types on input
LINK_TYPE_ALIASES = {
    "0": "fs",
    "1": "ss",
    "2": "ff",
    "3": "sf",
    "finish_to_start": "fs",
    "start_to_start": "ss",
    "finish_to_finish": "ff",
    "start_to_finish": "sf",
}


class Operation(str, Enum):
    """Mutation kinds handled by the hierarchy engine."""

    UPDATE = "update"
    MOVE = "move"
    COPY = "copy"
    DELETE = "delete"


class MoveMode(str, Enum):
    """Placement of a moved or copied task relative to its target."""

    CHILD = "child"
    BEFORE = "before"
    AFTER = "after"


class Task(BaseModel):
    """Stored task row."""

    id: int
    text: str = ""
    start_date: Optional[str] = None
    duration: int = 0
    progress: Union[int, float] = 0
    parent: int = ROOT_ID
    order: int = 0
    type: TaskType = TaskType.TASK
    open: bool = True


class Link(BaseModel):
    """Stored dependency link row."""

    id: int
    source: int
    target: int
    type: LinkType = LinkType.FINISH_TO_START


# Fields of TaskUpdate that map onto task columns
TASK_FIELDS = ("text", "start_date", "duration", "progress", "parent", "order", "type", "open")


class TaskUpdate(BaseModel):
    """
    Partial task record.

    Only fields present in ``model_fields_set`` are written; an explicit
    ``parent`` of 0 (or null/"") means "move to root", while an absent parent
    leaves the stored value unchanged.
    """

    text: Optional[str] = None
    start_date: Optional[str] = None
    duration: Optional[int] = Field(None, ge=0)
    progress: Optional[Union[int, float]] = Field(None, ge=0)
    parent: Optional[FuzzyInt] = None
    order: Optional[int] = Field(None, ge=0, description="Sibling index under the parent")
    type: Optional[TaskType] = None
    open: Optional[bool] = None

    @field_validator("parent", mode="before")
    @classmethod
    def explicit_null_is_root(cls, v):
        return ROOT_ID if v is None else v

    @field_validator("start_date", mode="before")
    @classmethod
    def validate_start_date(cls, v):
        return normalize_start_date(v)

    def changes(self) -> Dict[str, Any]:
        """Return the supplied task fields as a column-name keyed dict."""
        return {
            name: getattr(self, name)
            for name in TASK_FIELDS
            if name in self.model_fields_set and getattr(self, name) is not None
        }


class TaskMutation(TaskUpdate):
    """Body of a task mutation request: partial fields plus move/copy arguments."""

    operation: Operation = Operation.UPDATE
    target: Optional[FuzzyInt] = None
    mode: Optional[MoveMode] = None
    nested: bool = False

    @field_validator("target", mode="before")
    @classmethod
    def explicit_null_target_is_root(cls, v):
        return ROOT_ID if v is None else v

    def task_update(self) -> TaskUpdate:
        """Extract the partial task fields carried by this mutation."""
        return TaskUpdate.model_validate(self.changes())


class LinkUpdate(BaseModel):
    """Partial link record."""

    source: Optional[FuzzyInt] = None
    target: Optional[FuzzyInt] = None
    type: Optional[LinkType] = None

    @field_validator("type", mode="before")
    @classmethod
    def normalize_link_type(cls, v):
        if v is None or isinstance(v, LinkType):
            return v
        key = str(v).strip().lower()
        return LINK_TYPE_ALIASES.get(key, key)

    def changes(self) -> Dict[str, Any]:
        return {
            name: getattr(self, name)
            for name in ("source", "target", "type")
            if name in self.model_fields_set and getattr(self, name) is not None
        }


class BatchItem(BaseModel):
    """Single operation of a batch request; ``id`` may be a tentative client id."""

    entity: Literal["task", "link"]
    action: Literal["insert", "update", "delete"]
    id: Optional[Union[int, str]] = None
    data: Dict[str, Any] = Field(default_factory=dict)


class BatchRequest(BaseModel):
    items: List[BatchItem] = Field(min_length=1)


class BatchResponse(BaseModel):
    success: bool = True
    ids: Dict[str, int] = Field(description="Tentative id to durable id bindings")
    results: List[int] = Field(description="Affected id per batch item")


class MutationResponse(BaseModel):
    """Response carrying the id affected by a mutation."""

    id: int
    success: bool = True


class DataResponse(BaseModel):
    """Full Gantt payload as loaded by the editor."""

    tasks: List[Task]
    links: List[Link]


ModelT = TypeVar("ModelT", bound=BaseModel)


def parse_model(model_cls: Type[ModelT], data: Any) -> ModelT:
    """Validate ``data`` into ``model_cls``, surfacing failures as ValidationError."""
    if isinstance(data, model_cls):
        return data
    try:
        return model_cls.model_validate(data or {})
    except PydanticValidationError as e:
        errors = [
            {"field": ".".join(str(p) for p in err["loc"]) or "body", "message": err["msg"]}
            for err in e.errors()
        ]
        problems = "; ".join(f"{err['field']}: {err['message']}" for err in errors)
        raise ValidationError(
            f"Invalid {model_cls.__name__}: {problems}", details={"errors": errors}
        ) from e
