"""
Audit recording for entity mutations.

Every successful create, update or delete appends exactly one activity
record. Which kind of activity a mutation produces is decided by
``ACTIVITY_RULES``, an ordered table where the first matching rule wins.
"""

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from pydantic_core import to_jsonable_python

from crmcore.crm.constants import (
    ACTIVITIES_COLLECTION,
    ActivityKind,
    EntityKind,
    Mutation,
    TaskStatus,
)
from crmcore.crm.schemas import Activity, CRMEntity
from crmcore.crm.tenant import ActorSource, TenantResolver
from crmcore.crm.translator import ACTIVITY_TRANSLATOR
from crmcore.db.data_service import DataService
from crmcore.utils.logger import logger

# Bookkeeping fields never reported as changed
UNTRACKED_FIELDS = frozenset({"updated_at"})


@dataclass(frozen=True)
class MutationContext:
    """Everything the recorder needs to describe one mutation."""

    actor_id: str
    organization_id: str
    entity_kind: EntityKind
    mutation: Mutation
    before: CRMEntity | None = None
    after: CRMEntity | None = None

    @property
    def entity(self) -> CRMEntity:
        entity = self.after if self.after is not None else self.before
        if entity is None:
            raise ValueError("Mutation context has neither a before nor an after snapshot")
        return entity


def changed_fields(before: CRMEntity, after: CRMEntity) -> list[str]:
    """Names of fields whose value differs between two snapshots."""
    old = before.model_dump()
    new = after.model_dump()
    return sorted(
        name
        for name in new
        if name not in UNTRACKED_FIELDS and old.get(name) != new.get(name)
    )


def _is_deal_stage_change(ctx: MutationContext) -> bool:
    return (
        ctx.mutation is Mutation.UPDATE
        and ctx.entity_kind is EntityKind.DEAL
        and ctx.before is not None
        and ctx.after is not None
        and ctx.before.stage != ctx.after.stage
    )


def _is_task_completion(ctx: MutationContext) -> bool:
    return (
        ctx.mutation is Mutation.UPDATE
        and ctx.entity_kind is EntityKind.TASK
        and ctx.before is not None
        and ctx.after is not None
        and ctx.before.status != TaskStatus.COMPLETED
        and ctx.after.status == TaskStatus.COMPLETED
    )


def _is(mutation: Mutation) -> Callable[[MutationContext], bool]:
    return lambda ctx: ctx.mutation is mutation


def _created_metadata(ctx: MutationContext) -> dict[str, Any]:
    entity = ctx.entity
    if ctx.entity_kind is EntityKind.DEAL:
        return {"value": entity.value, "currency": entity.currency}
    if ctx.entity_kind is EntityKind.TASK:
        return {"priority": entity.priority, "due_date": entity.due_date}
    return {}


@dataclass(frozen=True)
class ActivityRule:
    """One row of the classification table."""

    kind: ActivityKind
    applies: Callable[[MutationContext], bool]
    metadata: Callable[[MutationContext], dict[str, Any]]


ACTIVITY_RULES: tuple[ActivityRule, ...] = (
    ActivityRule(
        ActivityKind.STAGE_CHANGED,
        _is_deal_stage_change,
        lambda ctx: {"old": ctx.before.stage, "new": ctx.after.stage},
    ),
    ActivityRule(
        ActivityKind.COMPLETED,
        _is_task_completion,
        lambda ctx: {"completed_at": ctx.after.completed_at},
    ),
    ActivityRule(ActivityKind.CREATED, _is(Mutation.CREATE), _created_metadata),
    ActivityRule(
        ActivityKind.UPDATED,
        _is(Mutation.UPDATE),
        lambda ctx: {"changed_fields": changed_fields(ctx.before, ctx.after)},
    ),
    ActivityRule(ActivityKind.DELETED, _is(Mutation.DELETE), lambda ctx: {}),
)

DESCRIPTIONS = {
    ActivityKind.CREATED: 'Created {entity} "{name}"',
    ActivityKind.UPDATED: 'Updated {entity} "{name}"',
    ActivityKind.STAGE_CHANGED: 'Changed {entity} "{name}" from {old} to {new}',
    ActivityKind.COMPLETED: 'Completed {entity} "{name}"',
    ActivityKind.DELETED: 'Deleted {entity} "{name}"',
}


def match_rule(ctx: MutationContext) -> ActivityRule:
    """Return the first rule that applies to the mutation."""
    for rule in ACTIVITY_RULES:
        if rule.applies(ctx):
            return rule
    raise ValueError(f"No activity rule for {ctx.entity_kind.value} {ctx.mutation.value}")


def classify(ctx: MutationContext) -> ActivityKind:
    return match_rule(ctx).kind


def subject_refs(entity_kind: EntityKind, entity: CRMEntity) -> dict[str, str]:
    """The entity itself plus whatever contact or deal it links to."""
    refs = {f"{entity_kind.value}_id": entity.id}
    for link in ("contact_id", "deal_id"):
        linked = getattr(entity, link, None)
        if link not in refs and linked:
            refs[link] = linked
    return refs


def build_activity(ctx: MutationContext) -> dict[str, Any]:
    """
    Derive the activity values for a mutation without writing anything.

    Returns:
        Internal activity fields (no id or created_at; the backend assigns them)
    """
    rule = match_rule(ctx)
    entity = ctx.entity
    metadata = to_jsonable_python(rule.metadata(ctx))
    title = f"{ctx.entity_kind.value.title()} {rule.kind.value.replace('_', ' ').title()}"
    description = DESCRIPTIONS[rule.kind].format(
        entity=ctx.entity_kind.value, name=entity.display_name, **metadata
    )
    return {
        "organization_id": ctx.organization_id,
        "actor_id": ctx.actor_id,
        "entity_kind": ctx.entity_kind,
        "kind": rule.kind,
        "title": title,
        "description": description,
        "metadata": metadata,
        **subject_refs(ctx.entity_kind, entity),
    }


class AuditRecorder:
    """Appends one activity record per mutation. Never raises."""

    def __init__(self, data_service: DataService):
        self.data_service = data_service

    async def record(self, ctx: MutationContext) -> Activity | None:
        """
        Write the activity record for a mutation.

        Failures are logged and suppressed: the mutation has already been
        applied and must not be reported as failed because its audit entry
        could not be written.

        Args:
            ctx: Mutation context

        Returns:
            The stored activity, or None if nothing was written
        """
        try:
            entity = ctx.entity
            if entity.organization_id != ctx.organization_id:
                logger.error(
                    "Refusing to record activity across organizations",
                    entity_kind=ctx.entity_kind.value,
                    entity_id=entity.id,
                    organization_id=ctx.organization_id,
                    entity_organization_id=entity.organization_id,
                )
                return None

            values = build_activity(ctx)
            row = await self.data_service.insert(
                ACTIVITIES_COLLECTION, ACTIVITY_TRANSLATOR.to_wire(values)
            )
            activity = ACTIVITY_TRANSLATOR.to_internal(row)
            logger.debug(
                "Activity recorded",
                activity_id=activity.id,
                activity_kind=activity.kind.value,
                entity_kind=ctx.entity_kind.value,
            )
            return activity
        except Exception:
            logger.exception(
                "Failed to record activity",
                entity_kind=ctx.entity_kind.value,
                mutation=ctx.mutation.value,
                organization_id=ctx.organization_id,
                actor_id=ctx.actor_id,
            )
            return None


class ActivityService:
    """Read-only, tenant-scoped access to activity records."""

    def __init__(
        self,
        data_service: DataService,
        tenant_resolver: TenantResolver,
        actors: ActorSource,
    ):
        self.data_service = data_service
        self.tenant_resolver = tenant_resolver
        self.actors = actors

    async def _list(self, filters: dict[str, Any]) -> list[Activity]:
        scope = await self.tenant_resolver.resolve_current(self.actors)
        filters = {ACTIVITY_TRANSLATOR.column("organization_id"): scope.organization_id, **filters}
        rows = await self.data_service.select(
            ACTIVITIES_COLLECTION,
            filters,
            order_by=ACTIVITY_TRANSLATOR.column("created_at"),
            descending=True,
        )
        return [ACTIVITY_TRANSLATOR.to_internal(row) for row in rows]

    async def get_all(self) -> list[Activity]:
        """All activities of the actor's organization, newest first."""
        return await self._list({})

    async def get_for_subject(
        self, entity_kind: EntityKind, entity_id: str
    ) -> list[Activity]:
        """Activities referencing one contact, deal or task, newest first."""
        column = ACTIVITY_TRANSLATOR.column(f"{EntityKind(entity_kind).value}_id")
        return await self._list({column: entity_id})
