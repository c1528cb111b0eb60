"""Fixtures for HTTP-level tests.

``ASGITransport`` does not run the lifespan, so services are injected
through ``create_app``.
"""

from collections.abc import AsyncGenerator

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from analytics_ingest.api.app import create_app
from analytics_ingest.config import Settings
from analytics_ingest.services import Services


@pytest.fixture()
def app(settings: Settings, services: Services) -> FastAPI:
    return create_app(settings, services)


@pytest.fixture()
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient]:
    transport = ASGITransport(app=app, raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
