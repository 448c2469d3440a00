import asyncio
import inspect

import pytest
from fastapi.testclient import TestClient

from billing.config import Settings
from billing.main import create_app
from helpers import JWT_SECRET, SALT_KEY, FakeGateway, FrozenClock


@pytest.fixture()
def settings(tmp_path):
    return Settings(
        db_path=str(tmp_path / "billing.db"),
        merchant_id="MERCHANTUAT",
        salt_key=SALT_KEY,
        salt_index="1",
        gateway_base_url="https://api-preprod.phonepe.com/apis/pg-sandbox",
        gateway_domain="phonepe.com",
        app_base_url="https://billing.example",
        sweeper_enabled=False,
        jwt_secret=JWT_SECRET,
    )


@pytest.fixture()
def clock():
    return FrozenClock()


@pytest.fixture()
def gateway():
    return FakeGateway()


@pytest.fixture()
def app(settings, gateway, clock):
    application = create_app(settings, http_client_factory=gateway.factory, clock=clock)
    application.state.user_repo.upsert("u1", "u1@example.com")
    application.state.user_repo.upsert("u2", "u2@example.com")
    return application


@pytest.fixture()
def client(app):
    """Provide a FastAPI TestClient for API tests."""
    return TestClient(app)


@pytest.hookimpl(tryfirst=True)
def pytest_pyfunc_call(pyfuncitem):
    """Run async test functions without requiring pytest-asyncio plugin."""

    test_func = pyfuncitem.obj
    if inspect.iscoroutinefunction(test_func):
        kwargs = {name: pyfuncitem.funcargs[name] for name in pyfuncitem._fixtureinfo.argnames}
        loop = asyncio.new_event_loop()
        try:
            loop.run_until_complete(test_func(**kwargs))
        finally:
            loop.close()
        return True
    return None
