# askmoe/conftest.py
import sys
import os
import pytest
from pathlib import Path

# Add project root to PYTHONPATH
PROJECT_ROOT = Path(__file__).resolve().parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

os.environ.setdefault("SKIP_ENV_VALIDATION", "1")
os.environ.setdefault("ENV", "test")


@pytest.fixture(scope="function", autouse=True)
def test_database(tmp_path, monkeypatch):
    """
    Fresh SQLite store per test.

    TEST_DATABASE_URL wins over DATABASE_URL, so nothing here can reach a
    real database.
    """
    from askmoe.core.database import dispose_engine, init_engine, create_all_tables

    url = f"sqlite:///{tmp_path / 'askmoe-test.db'}"
    monkeypatch.setenv("TEST_DATABASE_URL", url)
    dispose_engine()
    init_engine(url)
    create_all_tables()
    yield url
    dispose_engine()


@pytest.fixture(scope="function", autouse=True)
def reset_metrics():
    from askmoe.core.metrics import METRICS

    METRICS.reset()
    yield
    METRICS.reset()


@pytest.fixture
def fake_provider():
    from askmoe.tests.mocks import FakeProvider

    return FakeProvider()


@pytest.fixture
def app(fake_provider):
    """The application with a fresh admission controller and a fake provider."""
    from askmoe.main import app as fastapi_app
    from askmoe.core.ratelimit import AdmissionController, build_admission_config
    from askmoe.features.ai.provider import get_reasoning_provider

    fastapi_app.state.admission_controller = AdmissionController(build_admission_config())
    fastapi_app.dependency_overrides[get_reasoning_provider] = lambda: fake_provider
    yield fastapi_app
    fastapi_app.dependency_overrides.clear()
    fastapi_app.state.admission_controller = None


@pytest.fixture
def client(app):
    from fastapi.testclient import TestClient

    return TestClient(app)
