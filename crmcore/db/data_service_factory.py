"""
Data service factory.

Builds the backend data service selected by configuration.
"""

from crmcore.config import DataBackend, get_app_settings
from crmcore.db.config import get_db_settings
from crmcore.db.data_service import DataService
from crmcore.db.database import get_async_session_local
from crmcore.db.rest_data_service import AccessTokenGetter, RestDataService
from crmcore.db.sql_data_service import SQLAlchemyDataService


def create_data_service(
    access_token_getter: AccessTokenGetter | None = None,
) -> DataService:
    """
    Create a data service based on environment configuration.

    Args:
        access_token_getter: Supplies the session token for the REST backend

    Returns:
        DataService: The configured data service instance.

    Raises:
        ValueError: If the REST backend is selected without a URL.
    """
    backend = get_app_settings().data_backend

    if backend == DataBackend.SQL:
        return SQLAlchemyDataService(get_async_session_local())
    elif backend == DataBackend.REST:
        db_settings = get_db_settings()
        if not db_settings.rest_url:
            raise ValueError("DB_REST_URL is required for the rest data backend")
        return RestDataService(
            base_url=db_settings.rest_url,
            api_key=db_settings.rest_api_key,
            access_token_getter=access_token_getter,
            timeout=db_settings.rest_timeout_seconds,
        )
    else:
        raise ValueError(f"Unknown data backend: {backend}")
