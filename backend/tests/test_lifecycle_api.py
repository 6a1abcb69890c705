"""Tests for the host lifecycle endpoints."""
import pytest
from fastapi.testclient import TestClient
from unittest.mock import AsyncMock, MagicMock
from sqlalchemy.orm import sessionmaker

from shield_study.config import get_settings
from shield_study.database import Base, get_db, make_engine
from shield_study.main import app
from shield_study.api.lifecycle import get_coordinator
from shield_study.schemas.study import StudyConfig, StudyMetadata, Variation
from shield_study.services.coordinator import LifecycleCoordinator
from shield_study.services.feature import BaseFeature
from shield_study.services.prefs import PrefStore
from shield_study.services.study_utils import StudyUtils
from shield_study.services.variations import VARIATION_OVERRIDE_PREF

ADDON = {"id": "study@example.com", "version": "1.0.0"}


@pytest.fixture
def prefs():
    """Create a pref store over a dict-backed mock Redis."""
    store = {}
    redis_mock = MagicMock()
    redis_mock.get.side_effect = lambda key: store.get(key)
    redis_mock.set.side_effect = lambda key, value: store.__setitem__(key, value.encode())
    redis_mock.delete.side_effect = lambda key: store.pop(key, None)
    return PrefStore(redis_mock)


@pytest.fixture
def telemetry():
    client = MagicMock()
    client.send = AsyncMock()
    client.close = AsyncMock()
    return client


@pytest.fixture
def eligibility():
    return AsyncMock(return_value=True)


@pytest.fixture
def session_factory():
    """Create an in-memory database with the enrollment table."""
    engine = make_engine("sqlite://")
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def coordinator(session_factory, prefs, telemetry, eligibility):
    """A coordinator wired to a real study service over in-memory SQLite."""
    config = StudyConfig(
        study=StudyMetadata(study_name="api-study"),
        weighted_variations=[Variation(name="a"), Variation(name="b")],
        is_eligible=eligibility,
        prefs_branch="extensions.api-study.",
    )
    return LifecycleCoordinator(
        config,
        StudyUtils(session_factory, prefs, telemetry),
        BaseFeature,
        prefs,
    )


@pytest.fixture
def client(coordinator, session_factory):
    """Test client wired to the test coordinator and database."""
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_coordinator] = lambda: coordinator
    app.dependency_overrides[get_db] = override_get_db
    app.state.coordinator = coordinator
    yield TestClient(app)
    app.dependency_overrides.clear()
    del app.state.coordinator


@pytest.fixture
def headers():
    return {"x-api-key": get_settings().host_api_key}


def post_event(client, headers, event, reason):
    return client.post(f"/addon/{event}", json={"addon": ADDON, "reason": reason}, headers=headers)


def test_lifecycle_requires_api_key(client):
    """Test that calls without the host key are rejected."""
    response = client.post("/addon/startup", json={"addon": ADDON, "reason": "ADDON_INSTALL"})
    assert response.status_code == 401

    response = client.post(
        "/addon/startup",
        json={"addon": ADDON, "reason": "ADDON_INSTALL"},
        headers={"x-api-key": "wrong-key"}
    )
    assert response.status_code == 401


def test_install_startup_activates_study(client, headers, telemetry):
    """Test an eligible install through the HTTP adapter."""
    response = post_event(client, headers, "startup", "ADDON_INSTALL")

    assert response.status_code == 200
    body = response.json()
    assert body["event"] == "startup"
    assert body["reason"] == "INSTALL"
    assert body["state"] == "active"
    assert body["ending_reason"] is None
    assert body["variation"] in {"a", "b"}

    states = [c.args[1]["data"]["study_state"] for c in telemetry.send.await_args_list]
    assert states == ["enter", "installed"]
    assert "X-Trace-ID" in response.headers


def test_ineligible_install_reports_ending(client, headers, eligibility):
    """Test that ineligible installs end immediately."""
    eligibility.return_value = False

    body = post_event(client, headers, "startup", 5).json()

    assert body["state"] == "ending"
    assert body["ending_reason"] == "ineligible"
    assert body["uninstall_requested"] is True


def test_unknown_override_returns_500(client, headers, prefs):
    """Test that a bad override surfaces as a server error."""
    prefs.set_char_pref(VARIATION_OVERRIDE_PREF, "c")

    response = post_event(client, headers, "startup", "ADDON_INSTALL")

    assert response.status_code == 500
    assert "c" in response.json()["detail"]


def test_unknown_reason_is_unprocessable(client, headers):
    """Test that reasons outside the host enumeration are rejected."""
    response = post_event(client, headers, "startup", "ADDON_EXPLODE")
    assert response.status_code == 422


def test_double_uninstall_over_http(client, headers, telemetry):
    """Test that duplicate uninstall notifications end the study once."""
    post_event(client, headers, "startup", "APP_STARTUP")

    first = post_event(client, headers, "shutdown", "ADDON_UNINSTALL").json()
    second = post_event(client, headers, "shutdown", "ADDON_UNINSTALL").json()

    assert first["state"] == "ended"
    assert first["ending_reason"] == "user-disable"
    assert second["ending_reason"] == "user-disable"

    states = [c.args[1]["data"]["study_state"] for c in telemetry.send.await_args_list]
    assert states.count("user-disable") == 1
    telemetry.close.assert_awaited_once()


def test_browser_close_keeps_study_active(client, headers):
    """Test that an ordinary shutdown is ignored."""
    post_event(client, headers, "startup", "APP_STARTUP")

    body = post_event(client, headers, "shutdown", "APP_SHUTDOWN").json()

    assert body["state"] == "active"


def test_install_and_uninstall_notifications_only_observe(client, headers):
    """Test the observer hooks leave the state untouched."""
    assert post_event(client, headers, "install", "ADDON_INSTALL").json()["state"] == "not_started"
    assert post_event(client, headers, "uninstall", "ADDON_UNINSTALL").json()["state"] == "not_started"


def test_study_info(client, headers):
    """Test the info snapshot before and after startup."""
    before = client.get("/study/info", headers=headers).json()
    assert before["study"] is None
    assert before["coordinator"]["state"] == "not_started"

    post_event(client, headers, "startup", "APP_STARTUP")

    after = client.get("/study/info", headers=headers).json()
    assert after["study"]["study_name"] == "api-study"
    assert after["coordinator"]["has_feature"] is True


def test_health_check(client):
    """Test the basic health endpoint."""
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_uninstall_after_host_restart_ends_study(client, headers, telemetry):
    """Test that an uninstall reaching a coordinator with no startup yet still ends cleanly."""
    response = post_event(client, headers, "shutdown", "ADDON_UNINSTALL")

    assert response.status_code == 200
    body = response.json()
    assert body["state"] == "ended"
    assert body["ending_reason"] == "user-disable"

    states = [c.args[1]["data"]["study_state"] for c in telemetry.send.await_args_list]
    assert states == ["user-disable", "exit"]
    telemetry.close.assert_awaited_once()


def test_detailed_health_reports_study_state(client, headers):
    """Test readiness reports the coordinator state and enrollment counts."""
    before = client.get("/health/detailed").json()
    assert before["status"] == "healthy"
    assert before["study"]["coordinator"] == "ready"
    assert before["study"]["state"] == "not_started"
    assert before["enrollments"] == {}

    post_event(client, headers, "startup", "APP_STARTUP")
    post_event(client, headers, "shutdown", "ADDON_UNINSTALL")

    after = client.get("/health/detailed").json()
    assert after["study"]["state"] == "ended"
    assert after["study"]["ending_reason"] == "user-disable"
    assert after["enrollments"] == {"user-disable": 1}


def test_detailed_health_without_coordinator_is_degraded(client):
    """Test readiness fails before the composition root has run."""
    app.state.coordinator = None
    body = client.get("/health/detailed").json()

    assert body["status"] == "degraded"
    assert body["study"]["coordinator"] == "missing"
