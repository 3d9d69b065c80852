"""
Schema translation between wire rows and internal models.

Each entity kind has one bidirectional mapping table. Nothing outside this
module needs to know that a task's ``task_type`` is stored as ``type`` or that
an activity's kind is packed into a single ``type`` column.
"""

from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from datetime import UTC, date, datetime
from enum import Enum
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ValidationError

from crmcore.crm.constants import ActivityKind, EntityKind
from crmcore.crm.schemas import Activity, Contact, Deal, Task
from crmcore.exceptions import UpstreamError, ValidationFailedError
from crmcore.utils.logger import logger

ModelT = TypeVar("ModelT", bound=BaseModel)


def _identity(value: Any) -> Any:
    return value


def _plain(value: Any) -> Any:
    """Unwrap enums so the backend only sees primitive values."""
    if isinstance(value, Enum):
        return value.value
    return value


def _empty_list(value: Any) -> Any:
    return [] if value is None else value


def _empty_dict(value: Any) -> Any:
    return {} if value is None else value


def _nullable_ref(value: Any) -> Any:
    """Empty references are stored as NULL."""
    if isinstance(value, str) and not value.strip():
        return None
    return value


def _datetime_from_wire(value: Any) -> Any:
    """Parse ISO strings and treat naive timestamps as UTC."""
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    if isinstance(value, datetime) and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def _datetime_to_wire(value: Any) -> Any:
    """Store every timestamp in UTC."""
    value = _nullable_ref(value)
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)
    return value


def _date_from_wire(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, str):
        return date.fromisoformat(value[:10])
    return value


@dataclass(frozen=True)
class FieldMapping:
    """One internal field and the wire column that stores it."""

    name: str
    column: str
    to_wire: Callable[[Any], Any] = _plain
    from_wire: Callable[[Any], Any] = _identity


def same(name: str, **codecs: Callable[[Any], Any]) -> FieldMapping:
    """Mapping for a field whose wire column has the same name."""
    return FieldMapping(name=name, column=name, **codecs)


def timestamp(name: str, column: str | None = None) -> FieldMapping:
    return FieldMapping(
        name=name,
        column=column or name,
        to_wire=_datetime_to_wire,
        from_wire=_datetime_from_wire,
    )


def calendar_date(name: str) -> FieldMapping:
    return FieldMapping(
        name=name, column=name, to_wire=_nullable_ref, from_wire=_date_from_wire
    )


def reference(name: str) -> FieldMapping:
    return same(name, to_wire=_nullable_ref)


class SchemaTranslator(Generic[ModelT]):
    """Pure bidirectional mapping between wire rows and one internal model."""

    def __init__(
        self, kind: str, model: type[ModelT], mappings: Iterable[FieldMapping]
    ) -> None:
        self.kind = kind
        self.model = model
        self.mappings = tuple(mappings)
        self._by_name = {mapping.name: mapping for mapping in self.mappings}

    def column(self, name: str) -> str:
        """Wire column storing an internal field."""
        try:
            return self._by_name[name].column
        except KeyError:
            raise ValidationFailedError(f"Unknown {self.kind} field: {name}") from None

    def decode(self, row: Mapping[str, Any]) -> dict[str, Any]:
        """Rename wire columns to internal names and apply read codecs."""
        return {
            mapping.name: mapping.from_wire(row[mapping.column])
            for mapping in self.mappings
            if mapping.column in row
        }

    def to_internal(self, row: Mapping[str, Any]) -> ModelT:
        """
        Build the internal model from a wire row.

        Args:
            row: Row as returned by the data service

        Returns:
            The validated internal model

        Raises:
            UpstreamError: If the row cannot be decoded into the model
        """
        try:
            return self.model.model_validate(self.decode(row))
        except (ValidationError, ValueError, TypeError) as e:
            logger.error(
                "Malformed row from backend",
                entity_kind=self.kind,
                row_id=row.get("id"),
                error=str(e),
            )
            raise UpstreamError(f"Malformed {self.kind} row", original_error=e) from e

    def to_wire(self, values: Mapping[str, Any]) -> dict[str, Any]:
        """
        Translate a sparse set of internal values to wire columns.

        Only the fields present in ``values`` are emitted, so absent fields are
        left untouched by an update.

        Raises:
            ValidationFailedError: If a field name is not part of the model
        """
        unknown = sorted(set(values) - set(self._by_name))
        if unknown:
            raise ValidationFailedError(
                f"Unknown {self.kind} fields: {', '.join(unknown)}",
                errors=[{"loc": [name], "msg": "unknown field"} for name in unknown],
            )
        return {
            mapping.column: mapping.to_wire(values[mapping.name])
            for mapping in self.mappings
            if mapping.name in values
        }


_ENTITY_CORE = (
    same("id"),
    same("organization_id"),
    same("created_by"),
    reference("assigned_to"),
    same("tags", from_wire=_empty_list),
    same("notes"),
    same("custom_fields", from_wire=_empty_dict),
    timestamp("created_at"),
    timestamp("updated_at"),
)

CONTACT_TRANSLATOR = SchemaTranslator(
    EntityKind.CONTACT.value,
    Contact,
    (
        *_ENTITY_CORE,
        same("first_name"),
        same("last_name"),
        same("email"),
        same("phone"),
        same("mobile"),
        same("company"),
        same("job_title"),
        same("department"),
        same("website"),
        same("linkedin_url"),
        same("twitter_url"),
        same("facebook_url"),
        same("address"),
        same("lead_score"),
        same("status"),
        same("lead_source"),
        same("lifecycle_stage"),
        timestamp("last_contacted_at"),
        timestamp("next_follow_up_at"),
    ),
)

DEAL_TRANSLATOR = SchemaTranslator(
    EntityKind.DEAL.value,
    Deal,
    (
        *_ENTITY_CORE,
        same("title"),
        same("description"),
        same("value"),
        same("currency"),
        same("stage"),
        same("probability"),
        calendar_date("expected_close_date"),
        calendar_date("actual_close_date"),
        reference("contact_id"),
        same("lead_source"),
    ),
)

TASK_TRANSLATOR = SchemaTranslator(
    EntityKind.TASK.value,
    Task,
    (
        *_ENTITY_CORE,
        same("title"),
        same("description"),
        FieldMapping(name="task_type", column="type"),
        same("priority"),
        same("status"),
        timestamp("due_date"),
        timestamp("reminder_at"),
        timestamp("completed_at"),
        reference("contact_id"),
        reference("deal_id"),
    ),
)


class ActivityTranslator(SchemaTranslator[Activity]):
    """
    Translator for activity records.

    The wire ``type`` column packs entity kind and activity kind together,
    e.g. ``deal_stage_changed``.
    """

    PACKED = ("entity_kind", "kind")

    def __init__(self) -> None:
        super().__init__(
            "activity",
            Activity,
            (
                same("id"),
                same("organization_id"),
                FieldMapping(name="actor_id", column="user_id"),
                same("title"),
                same("description"),
                reference("contact_id"),
                reference("deal_id"),
                reference("task_id"),
                same("metadata", from_wire=_empty_dict),
                timestamp("created_at"),
            ),
        )

    def column(self, name: str) -> str:
        if name in self.PACKED:
            return "type"
        return super().column(name)

    def decode(self, row: Mapping[str, Any]) -> dict[str, Any]:
        data = super().decode(row)
        activity_type = row.get("type")
        if isinstance(activity_type, str) and "_" in activity_type:
            entity_kind, kind = activity_type.split("_", 1)
            data["entity_kind"] = entity_kind
            data["kind"] = kind
        return data

    def to_wire(self, values: Mapping[str, Any]) -> dict[str, Any]:
        values = dict(values)
        packed = {name: values.pop(name) for name in self.PACKED if name in values}
        wire = super().to_wire(values)
        if packed:
            if len(packed) != len(self.PACKED):
                raise ValidationFailedError(
                    "Activity entity_kind and kind must be written together"
                )
            wire["type"] = self.pack_type(packed["entity_kind"], packed["kind"])
        return wire

    @staticmethod
    def pack_type(entity_kind: EntityKind | str, kind: ActivityKind | str) -> str:
        return f"{_plain(entity_kind)}_{_plain(kind)}"


ACTIVITY_TRANSLATOR = ActivityTranslator()

TRANSLATORS: dict[EntityKind, SchemaTranslator] = {
    EntityKind.CONTACT: CONTACT_TRANSLATOR,
    EntityKind.DEAL: DEAL_TRANSLATOR,
    EntityKind.TASK: TASK_TRANSLATOR,
}
