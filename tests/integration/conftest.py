"""
Integration fixtures: background dispatch draining and an HTTP client for
the API app with an overridable caller identity.
"""

from typing import Iterable

import httpx
import pytest

from models.operations.notifications import drain_background_tasks


@pytest.fixture(autouse=True)
async def drain_notifications(store):
    """Finish fire-and-forget deliveries before the store is torn down."""
    yield
    await drain_background_tasks()


@pytest.fixture
def app():
    from main import app as api_app
    from routes.dependencies import current_user_get

    yield api_app
    api_app.dependency_overrides.pop(current_user_get, None)


@pytest.fixture
def login(app):
    """``login("user-1", roles=["admin"])`` makes subsequent requests come from that user."""
    from routes.dependencies import current_user_get

    def _login(sub: str, roles: Iterable[str] = ()) -> None:
        claims = {"sub": sub, "email": f"{sub}@example.com", "roles": list(roles)}
        app.dependency_overrides[current_user_get] = lambda: claims

    return _login


@pytest.fixture
async def client(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
