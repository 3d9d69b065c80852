from enum import Enum


class EntityKind(str, Enum):
    """Business entity kinds served by the entity access services."""

    CONTACT = "contact"
    DEAL = "deal"
    TASK = "task"


class ActivityKind(str, Enum):
    """Closed set of activity (audit) kinds."""

    CREATED = "created"
    UPDATED = "updated"
    STAGE_CHANGED = "stage_changed"
    COMPLETED = "completed"
    DELETED = "deleted"


class Mutation(str, Enum):
    """Kinds of write performed by an entity access service."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class ContactStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    QUALIFIED = "qualified"
    UNQUALIFIED = "unqualified"
    CONVERTED = "converted"


class LeadSource(str, Enum):
    WEBSITE = "website"
    REFERRAL = "referral"
    SOCIAL_MEDIA = "social_media"
    EMAIL_CAMPAIGN = "email_campaign"
    COLD_CALL = "cold_call"
    EVENT = "event"
    ADVERTISEMENT = "advertisement"
    OTHER = "other"


class LifecycleStage(str, Enum):
    SUBSCRIBER = "subscriber"
    LEAD = "lead"
    MARKETING_QUALIFIED_LEAD = "marketing_qualified_lead"
    SALES_QUALIFIED_LEAD = "sales_qualified_lead"
    OPPORTUNITY = "opportunity"
    CUSTOMER = "customer"
    EVANGELIST = "evangelist"


class DealStage(str, Enum):
    """Sales pipeline stages, in pipeline order."""

    PROSPECTING = "prospecting"
    QUALIFICATION = "qualification"
    PROPOSAL = "proposal"
    NEGOTIATION = "negotiation"
    CLOSED_WON = "closed_won"
    CLOSED_LOST = "closed_lost"


class TaskType(str, Enum):
    TASK = "task"
    CALL = "call"
    EMAIL = "email"
    MEETING = "meeting"
    FOLLOW_UP = "follow_up"
    DEMO = "demo"
    OTHER = "other"


class TaskPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class TaskStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


# Collection backing each entity kind
COLLECTION_BY_KIND = {
    EntityKind.CONTACT: "contacts",
    EntityKind.DEAL: "deals",
    EntityKind.TASK: "tasks",
}

ACTIVITIES_COLLECTION = "activities"
PROFILES_COLLECTION = "profiles"
ORGANIZATIONS_COLLECTION = "organizations"
