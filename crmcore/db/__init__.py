"""Database layer: ORM models and the backend data services."""

from crmcore.db.config import DatabaseSettings, get_db_settings
from crmcore.db.data_service import DataService
from crmcore.db.database import Base, close_db, init_db
from crmcore.db.rest_data_service import RestDataService
from crmcore.db.sql_data_service import SQLAlchemyDataService

__all__ = [
    "Base",
    "DataService",
    "DatabaseSettings",
    "RestDataService",
    "SQLAlchemyDataService",
    "close_db",
    "get_db_settings",
    "init_db",
]
