"""
Pydantic schemas for CRM entities.

Internal field names are snake_case; every model also accepts camelCase
aliases (``firstName``, ``leadScore``) so presentation-layer payloads can be
passed straight through.
"""

import json
from abc import ABC, abstractmethod
from datetime import date, datetime
from typing import Annotated, Any, ClassVar

from pydantic import (
    AfterValidator,
    AliasChoices,
    BaseModel,
    BeforeValidator,
    Field,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from crmcore.crm.constants import (
    ActivityKind,
    ContactStatus,
    DealStage,
    EntityKind,
    LeadSource,
    LifecycleStage,
    TaskPriority,
    TaskStatus,
    TaskType,
)


def _blank_to_none(value: Any) -> Any:
    """Treat an empty string as an absent optional value."""
    if isinstance(value, str) and not value.strip():
        return None
    return value


def _validate_custom_fields(value: Any) -> Any:
    """
    Accept only string-keyed, JSON-representable mappings.

    Rejects cyclic structures, NaN/Infinity and non-serializable values.
    """
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValueError("custom fields must be an object")
    bad_keys = [key for key in value if not isinstance(key, str)]
    if bad_keys:
        raise ValueError(f"custom field keys must be strings, got {bad_keys!r}")
    try:
        json.dumps(value, allow_nan=False)
    except (TypeError, ValueError) as e:
        raise ValueError(f"custom fields must be JSON-representable: {e}") from e
    return value


def _dedupe_tags(value: list[str]) -> list[str]:
    return list(dict.fromkeys(value))


CustomFields = Annotated[dict[str, Any], BeforeValidator(_validate_custom_fields)]
Tags = Annotated[
    list[str], BeforeValidator(lambda v: [] if v is None else v), AfterValidator(_dedupe_tags)
]
OptionalRef = Annotated[str | None, BeforeValidator(_blank_to_none)]
OptionalDate = Annotated[date | None, BeforeValidator(_blank_to_none)]
OptionalDateTime = Annotated[datetime | None, BeforeValidator(_blank_to_none)]


class CRMModel(BaseModel):
    """Base model accepting both snake_case names and camelCase aliases."""

    model_config = {"populate_by_name": True, "alias_generator": to_camel}


class InputModel(CRMModel):
    """Base for create/update payloads. Unknown fields are rejected."""

    model_config = {"extra": "forbid"}


class UpdateModel(InputModel):
    """
    Base for sparse update payloads.

    Every field is optional; only fields the caller actually set are written.
    Fields listed in ``not_nullable`` may be omitted but not set to null.
    """

    not_nullable: ClassVar[frozenset[str]] = frozenset()

    assigned_to: OptionalRef = None
    tags: Tags | None = None
    notes: str | None = None
    custom_fields: CustomFields | None = None

    @model_validator(mode="after")
    def reject_null_required_fields(self) -> "UpdateModel":
        nulls = sorted(
            name
            for name in self.model_fields_set & self.not_nullable
            if getattr(self, name) is None
        )
        if nulls:
            raise ValueError(f"fields cannot be null: {', '.join(nulls)}")
        return self


class EntityFields(CRMModel):
    """Optional fields shared by every entity kind."""

    assigned_to: OptionalRef = None
    tags: Tags = Field(default_factory=list)
    notes: str | None = None
    custom_fields: CustomFields = Field(default_factory=dict)


class EntityRecord(CRMModel, ABC):
    """Required core stamped on every stored entity."""

    id: str = Field(..., description="Entity UUID")
    organization_id: str = Field(..., description="Owning organization UUID")
    created_by: str | None = Field(None, description="Profile id of the creator")
    created_at: datetime = Field(..., description="Creation timestamp")
    updated_at: datetime = Field(..., description="Last update timestamp")

    @property
    @abstractmethod
    def display_name(self) -> str:
        """Human-readable name used in activity descriptions."""
        pass


# Contacts
class Address(CRMModel):
    """Postal address stored as a JSON object."""

    street: str | None = None
    city: str | None = None
    state: str | None = None
    zip_code: str | None = None
    country: str | None = None


class ContactBase(EntityFields):
    first_name: str = Field(..., min_length=1, max_length=128)
    last_name: str = Field(..., min_length=1, max_length=128)
    email: str | None = Field(None, max_length=255)
    phone: str | None = Field(None, max_length=64)
    mobile: str | None = Field(None, max_length=64)
    company: str | None = Field(None, max_length=255)
    job_title: str | None = Field(None, max_length=128)
    department: str | None = Field(None, max_length=128)
    website: str | None = None
    linkedin_url: str | None = None
    twitter_url: str | None = None
    facebook_url: str | None = None
    address: Address | None = None
    lead_score: int = Field(0, ge=0, le=100)
    status: ContactStatus = ContactStatus.ACTIVE
    lead_source: LeadSource | None = None
    lifecycle_stage: LifecycleStage = LifecycleStage.LEAD
    last_contacted_at: OptionalDateTime = None
    next_follow_up_at: OptionalDateTime = None


class ContactCreate(ContactBase, InputModel):
    """Schema for creating a contact."""

    pass


class ContactUpdate(UpdateModel):
    """Schema for a sparse contact update."""

    not_nullable: ClassVar[frozenset[str]] = frozenset(
        {"first_name", "last_name", "lead_score", "status", "lifecycle_stage", "tags", "custom_fields"}
    )

    first_name: str | None = Field(None, min_length=1, max_length=128)
    last_name: str | None = Field(None, min_length=1, max_length=128)
    email: str | None = Field(None, max_length=255)
    phone: str | None = Field(None, max_length=64)
    mobile: str | None = Field(None, max_length=64)
    company: str | None = Field(None, max_length=255)
    job_title: str | None = Field(None, max_length=128)
    department: str | None = Field(None, max_length=128)
    website: str | None = None
    linkedin_url: str | None = None
    twitter_url: str | None = None
    facebook_url: str | None = None
    address: Address | None = None
    lead_score: int | None = Field(None, ge=0, le=100)
    status: ContactStatus | None = None
    lead_source: LeadSource | None = None
    lifecycle_stage: LifecycleStage | None = None
    last_contacted_at: OptionalDateTime = None
    next_follow_up_at: OptionalDateTime = None


class Contact(ContactBase, EntityRecord):
    """Stored contact."""

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


# Deals
class DealBase(EntityFields):
    title: str = Field(..., min_length=1, max_length=255)
    description: str | None = None
    value: float = Field(0, ge=0, description="Deal amount")
    currency: str = Field("USD", min_length=3, max_length=3, description="ISO 4217 code")
    stage: DealStage = DealStage.PROSPECTING
    probability: int = Field(10, ge=0, le=100, description="Win probability percentage")
    expected_close_date: OptionalDate = None
    actual_close_date: OptionalDate = None
    contact_id: OptionalRef = None
    lead_source: LeadSource | None = None

    @field_validator("currency")
    @classmethod
    def normalize_currency(cls, v: str) -> str:
        return v.upper()


class DealCreate(DealBase, InputModel):
    """Schema for creating a deal."""

    pass


class DealUpdate(UpdateModel):
    """Schema for a sparse deal update."""

    not_nullable: ClassVar[frozenset[str]] = frozenset(
        {"title", "value", "currency", "stage", "probability", "tags", "custom_fields"}
    )

    title: str | None = Field(None, min_length=1, max_length=255)
    description: str | None = None
    value: float | None = Field(None, ge=0)
    currency: str | None = Field(None, min_length=3, max_length=3)
    stage: DealStage | None = None
    probability: int | None = Field(None, ge=0, le=100)
    expected_close_date: OptionalDate = None
    actual_close_date: OptionalDate = None
    contact_id: OptionalRef = None
    lead_source: LeadSource | None = None

    @field_validator("currency")
    @classmethod
    def normalize_currency(cls, v: str | None) -> str | None:
        return v.upper() if v is not None else None


class Deal(DealBase, EntityRecord):
    """Stored deal."""

    @property
    def display_name(self) -> str:
        return self.title


# Tasks
class TaskBase(EntityFields):
    title: str = Field(..., min_length=1, max_length=255)
    description: str | None = None
    task_type: TaskType = Field(
        TaskType.TASK, validation_alias=AliasChoices("task_type", "taskType", "type")
    )
    priority: TaskPriority = TaskPriority.MEDIUM
    status: TaskStatus = TaskStatus.PENDING
    due_date: OptionalDateTime = None
    reminder_at: OptionalDateTime = None
    contact_id: OptionalRef = None
    deal_id: OptionalRef = None


class TaskCreate(TaskBase, InputModel):
    """Schema for creating a task. Completion time is never caller-supplied."""

    pass


class TaskUpdate(UpdateModel):
    """Schema for a sparse task update."""

    not_nullable: ClassVar[frozenset[str]] = frozenset(
        {"title", "task_type", "priority", "status", "tags", "custom_fields"}
    )

    title: str | None = Field(None, min_length=1, max_length=255)
    description: str | None = None
    task_type: TaskType | None = Field(
        None, validation_alias=AliasChoices("task_type", "taskType", "type")
    )
    priority: TaskPriority | None = None
    status: TaskStatus | None = None
    due_date: OptionalDateTime = None
    reminder_at: OptionalDateTime = None
    contact_id: OptionalRef = None
    deal_id: OptionalRef = None


class Task(TaskBase, EntityRecord):
    """Stored task."""

    completed_at: datetime | None = Field(
        None, description="Set by the service when the task is first completed"
    )

    @property
    def display_name(self) -> str:
        return self.title


# Activities
class Activity(CRMModel):
    """Immutable audit record describing one mutation."""

    id: str
    organization_id: str
    actor_id: str
    entity_kind: EntityKind
    kind: ActivityKind
    title: str
    description: str | None = None
    contact_id: str | None = None
    deal_id: str | None = None
    task_id: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime


CRMEntity = Contact | Deal | Task
