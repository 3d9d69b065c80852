"""
Registry of every SQLAlchemy model.

Importing this module registers all tables on ``Base.metadata``; it is used
by ``init_db`` and by the Alembic environment.
"""

from crmcore.db.activities.model import Activity
from crmcore.db.contacts.model import Contact
from crmcore.db.deals.model import Deal
from crmcore.db.organizations.model import Organization
from crmcore.db.profiles.model import Profile
from crmcore.db.tasks.model import Task

# Collection name -> model, for every collection the data services expose
COLLECTION_MODELS = {
    model.__tablename__: model
    for model in (Organization, Profile, Contact, Deal, Task, Activity)
}

__all__ = [
    "Activity",
    "COLLECTION_MODELS",
    "Contact",
    "Deal",
    "Organization",
    "Profile",
    "Task",
]
