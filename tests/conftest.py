"""
Pytest configuration and shared fixtures for identity reconciliation tests.

Test Categories:
- unit: Fast tests against a temporary SQLite database
- integration: Tests exercising the app lifespan or several threads

Run categories:
- pytest -m unit              # Fast unit tests only
- pytest -m "not integration" # Skip integration tests
- pytest                      # All tests
"""
import pytest


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "unit: Fast unit tests")
    config.addinivalue_line("markers", "integration: Integration tests (lifespan, threads)")


@pytest.fixture
def db_path(tmp_path):
    """Path to a fresh contacts database for one test."""
    return str(tmp_path / "contacts.db")


@pytest.fixture
def contact_store(db_path):
    """
    Open a ContactStore on a temporary database.

    Function-scoped so every test starts from an empty store.
    """
    from api.services.contact_store import ContactStore

    store = ContactStore(db_path=db_path, timeout=2.0).open()
    yield store
    store.close()


@pytest.fixture
def resolver(contact_store):
    """IdentityResolver with fast conflict retries."""
    from api.services.identity_resolver import IdentityResolver
    from api.services.resilience import RetryConfig

    return IdentityResolver(contact_store, retry_config=RetryConfig(max_retries=2, base_delay=0.01))


@pytest.fixture
def client(contact_store):
    """
    TestClient with the temporary store injected.

    The lifespan is not run (no `with`), so the app never opens the
    configured production database.
    """
    from fastapi.testclient import TestClient
    from api.main import app
    from api.routes.identify import get_contact_store

    app.dependency_overrides[get_contact_store] = lambda: contact_store
    yield TestClient(app)
    app.dependency_overrides.clear()


def pytest_collection_modifyitems(config, items):
    """Auto-mark tests whose names say they are integration tests."""
    for item in items:
        if "integration" in item.name or "concurrent" in item.name:
            item.add_marker(pytest.mark.integration)
