"""Request payload models. Update models only carry the fields a client sends."""

from typing import Annotated, Literal, Optional

from pydantic import AfterValidator, BaseModel, BeforeValidator, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from feedback_platform.errors import ValidationFailed

AssessmentStatus = Literal["draft", "completed"]


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )


def _unique_criterion_ids(criteria):
    ids = [criterion.id for criterion in criteria]
    if len(ids) != len(set(ids)):
        raise ValueError("criterion ids must be unique")
    return criteria


def _scores_in_range(scores):
    for criterion_id, score in scores.items():
        if not 1 <= score <= 5:
            raise ValueError(f"score for criterion {criterion_id} must be between 1 and 5")
    return scores


def _not_null(value):
    # Optional update fields may be left out, but not sent as null
    if value is None:
        raise ValueError("may not be null")
    return value


NotNull = BeforeValidator(_not_null)


class Criterion(CamelModel):
    id: int
    name: str = Field(min_length=1)
    description: Optional[str] = None


CriteriaList = Annotated[list[Criterion], AfterValidator(_unique_criterion_ids)]
ScoreMap = Annotated[dict[int, float], AfterValidator(_scores_in_range)]


class LoginRequest(CamelModel):
    username: str = Field(min_length=1)
    password: str = Field(min_length=1)


class UserCreate(CamelModel):
    username: str = Field(min_length=1, max_length=80)
    password: str = Field(min_length=1)
    email: str = Field(min_length=3, max_length=120)
    full_name: str = Field(min_length=1, max_length=120)


class SchoolCreate(CamelModel):
    name: str = Field(min_length=1, max_length=150)
    address: Optional[str] = None


class SchoolUpdate(CamelModel):
    name: Annotated[Optional[str], NotNull] = Field(default=None, min_length=1, max_length=150)
    address: Optional[str] = None


class ClassCreate(CamelModel):
    name: str = Field(min_length=1, max_length=100)
    school_id: int


class ClassUpdate(CamelModel):
    name: Annotated[Optional[str], NotNull] = Field(default=None, min_length=1, max_length=100)
    school_id: Annotated[Optional[int], NotNull] = None


class StudentCreate(CamelModel):
    class_id: int


class StudentUpdate(CamelModel):
    class_id: Annotated[Optional[int], NotNull] = None


class AssessorCreate(CamelModel):
    school_ids: list[int] = Field(default_factory=list)


class AssessorUpdate(CamelModel):
    school_ids: Annotated[Optional[list[int]], NotNull] = None


class RubricTemplateCreate(CamelModel):
    name: str = Field(min_length=1, max_length=150)
    description: Optional[str] = None
    criteria: CriteriaList


class RubricTemplateUpdate(CamelModel):
    name: Annotated[Optional[str], NotNull] = Field(default=None, min_length=1, max_length=150)
    description: Optional[str] = None
    criteria: Annotated[Optional[CriteriaList], NotNull] = None


class TaskCreate(CamelModel):
    name: str = Field(min_length=1, max_length=150)
    description: Optional[str] = None
    rubric_template_id: int


class TaskUpdate(CamelModel):
    name: Annotated[Optional[str], NotNull] = Field(default=None, min_length=1, max_length=150)
    description: Optional[str] = None
    rubric_template_id: Annotated[Optional[int], NotNull] = None


class ClassTaskCreate(CamelModel):
    class_id: int
    task_id: int


class AssessmentCreate(CamelModel):
    student_id: int
    assessor_id: int
    task_id: int
    status: AssessmentStatus = "draft"
    scores: ScoreMap = Field(default_factory=dict)
    feedback: Optional[str] = None
    criterion_feedback: dict[int, str] = Field(default_factory=dict)


class AssessmentUpdate(CamelModel):
    student_id: Annotated[Optional[int], NotNull] = None
    assessor_id: Annotated[Optional[int], NotNull] = None
    task_id: Annotated[Optional[int], NotNull] = None
    status: Annotated[Optional[AssessmentStatus], NotNull] = None
    scores: Annotated[Optional[ScoreMap], NotNull] = None
    feedback: Optional[str] = None
    criterion_feedback: Optional[dict[int, str]] = None


def parse(model, data, message):
    """Validate ``data`` against ``model`` or raise ``ValidationFailed``."""
    try:
        return model.model_validate(data if data is not None else {})
    except ValidationError as exc:
        raise ValidationFailed.from_pydantic(message, exc) from exc


def changes(payload):
    return payload.model_dump(exclude_unset=True)
