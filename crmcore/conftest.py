"""Shared fixtures: an in-memory SQLite backend and an in-memory auth provider."""

import pytest
import pytest_asyncio

import crmcore.db.models  # noqa: F401
from crmcore.auth.dataclasses import SignUpData
from crmcore.auth.service import InMemoryAuthProvider
from crmcore.client import CRMClient
from crmcore.db.database import Base, build_async_engine, build_session_factory
from crmcore.db.sql_data_service import SQLAlchemyDataService
from crmcore.exceptions import UpstreamError


class FailingActivitiesDataService(SQLAlchemyDataService):
    """SQL data service whose activity inserts always fail."""

    async def insert(self, collection, values):
        if collection == "activities":
            raise UpstreamError("activities table unavailable")
        return await super().insert(collection, values)


@pytest_asyncio.fixture
async def engine():
    """Create a fresh in-memory database with every table."""
    engine = build_async_engine("sqlite+aiosqlite:///:memory:")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def data_service(session_factory):
    return SQLAlchemyDataService(session_factory)


@pytest.fixture
def auth_provider():
    return InMemoryAuthProvider()


async def register_client(
    data_service, auth_provider, email, password="secret-password", **metadata
) -> CRMClient:
    """Start a client and register a new user through it."""
    client = CRMClient(data_service, auth_provider, refresh_margin_seconds=60)
    await client.start()
    await client.session.register(SignUpData(email=email, password=password, **metadata))
    return client


@pytest_asyncio.fixture
async def client(data_service, auth_provider):
    """A started client with nobody signed in."""
    client = CRMClient(data_service, auth_provider, refresh_margin_seconds=60)
    await client.start()
    yield client
    await client.close()


@pytest_asyncio.fixture
async def signed_in(data_service, auth_provider):
    """A client signed in as the owner of the Acme organization."""
    client = await register_client(
        data_service, auth_provider, "owner@acme.com", first_name="Olivia", last_name="Owner"
    )
    yield client
    await client.close()


@pytest_asyncio.fixture
async def other_tenant(data_service):
    """A second client, with its own auth provider, signed in to a different organization."""
    client = await register_client(
        data_service, InMemoryAuthProvider(), "rival@globex.com", first_name="Gary"
    )
    yield client
    await client.close()


@pytest_asyncio.fixture
async def audit_failing(session_factory):
    """A signed-in client whose activity writes always fail."""
    client = await register_client(
        FailingActivitiesDataService(session_factory), InMemoryAuthProvider(), "owner@initech.com"
    )
    yield client
    await client.close()
