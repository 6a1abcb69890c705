"""Tests for the study service."""
import pytest
from unittest.mock import AsyncMock, MagicMock
from sqlalchemy.orm import sessionmaker

from shield_study.database import Base, make_engine
from shield_study.models.lifecycle import EndingReason, LifecycleReason
from shield_study.models.study import StudyRecord
from shield_study.schemas.study import AddonMetadata, Ending, StudyConfig, StudyMetadata, Variation
from shield_study.services.prefs import PrefStore
from shield_study.services.study_utils import CLIENT_ID_PREF, StudyNotConfiguredError, StudyUtils


@pytest.fixture
def session_factory():
    """Create an in-memory database with the enrollment table."""
    engine = make_engine("sqlite://")
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


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
    """Create a mock telemetry client."""
    client = MagicMock()
    client.send = AsyncMock()
    client.close = AsyncMock()
    return client


@pytest.fixture
def config():
    return StudyConfig(
        study=StudyMetadata(
            study_name="test-study",
            endings={"ineligible": Ending(url="https://example.com/ineligible")},
        ),
        weighted_variations=[Variation(name="control"), Variation(name="treatment")],
    )


@pytest.fixture
def addon():
    return AddonMetadata(id="study@example.com", version="1.2.0")


@pytest.fixture
def study(session_factory, prefs, telemetry, config, addon):
    """A study service that has been set up with a variation."""
    service = StudyUtils(session_factory, prefs, telemetry)
    service.setup(config, addon)
    service.set_variation(config.weighted_variations[1])
    return service


def sent_states(telemetry):
    """Study states carried by every ping sent so far."""
    return [c.args[1]["data"]["study_state"] for c in telemetry.send.await_args_list]


@pytest.mark.asyncio
async def test_methods_require_setup(session_factory, prefs, telemetry, config):
    """Test that using the service before setup fails loudly."""
    service = StudyUtils(session_factory, prefs, telemetry)

    with pytest.raises(StudyNotConfiguredError):
        await service.deterministic_variation(config.weighted_variations)

    with pytest.raises(StudyNotConfiguredError):
        service.info()


@pytest.mark.asyncio
async def test_pings_require_variation(session_factory, prefs, telemetry, config, addon):
    """Test that pings need a variation to report as the branch."""
    service = StudyUtils(session_factory, prefs, telemetry)
    service.setup(config, addon)

    with pytest.raises(StudyNotConfiguredError):
        await service.first_seen()


def test_client_id_is_created_once(study, prefs):
    """Test that the client id is generated once and stored."""
    first = study.client_id()
    second = study.client_id()

    assert first == second
    assert prefs.get_char_pref(CLIENT_ID_PREF) == first


@pytest.mark.asyncio
async def test_deterministic_variation_is_stable_per_client(study, prefs, config):
    """Test that the same client always lands in the same arm."""
    prefs.set_char_pref(CLIENT_ID_PREF, "client-abc")

    picks = [await study.deterministic_variation(config.weighted_variations) for _ in range(5)]

    assert len({p.name for p in picks}) == 1
    assert picks[0] in config.weighted_variations


@pytest.mark.asyncio
async def test_deterministic_variation_spreads_clients(study, prefs, config):
    """Test that different clients are distributed across arms."""
    assignments = {}
    for i in range(400):
        prefs.set_char_pref(CLIENT_ID_PREF, f"client_{i}")
        variation = await study.deterministic_variation(config.weighted_variations)
        assignments[variation.name] = assignments.get(variation.name, 0) + 1

    control_pct = assignments.get("control", 0) / 400 * 100
    assert 35 <= control_pct <= 65, f"Control should be ~50%, got {control_pct}%"


def test_set_variation_persists_enrollment(study):
    """Test that the chosen variation is stored on the enrollment record."""
    record = study.enrollment()

    assert record is not None
    assert record.variation == "treatment"
    assert record.addon_id == "study@example.com"
    assert record.addon_version == "1.2.0"


@pytest.mark.asyncio
async def test_first_seen_sends_enter_ping(study, telemetry):
    """Test the enter ping and first-seen timestamp."""
    await study.first_seen()

    assert sent_states(telemetry) == ["enter"]
    ping_type, payload = telemetry.send.await_args.args
    assert ping_type == "shield-study"
    assert payload["branch"] == "treatment"
    assert payload["study_name"] == "test-study"
    assert study.enrollment().first_seen_at is not None
    assert study.info()["is_first_run"] is True


@pytest.mark.asyncio
async def test_startup_sends_install_ping_only_on_install(study, telemetry):
    """Test that only an INSTALL startup produces the installed ping."""
    await study.startup(LifecycleReason.STARTUP)
    await study.startup(LifecycleReason.UPGRADE)
    assert sent_states(telemetry) == []

    await study.startup(LifecycleReason.INSTALL)
    assert sent_states(telemetry) == ["installed"]
    assert study.enrollment().installed_at is not None


@pytest.mark.asyncio
async def test_end_study_is_idempotent(study, telemetry):
    """Test that only the first end_study reports and records."""
    await study.end_study(EndingReason.INELIGIBLE)
    await study.end_study(EndingReason.USER_DISABLE)

    assert study.is_ending is True
    assert sent_states(telemetry) == ["ineligible", "exit"]

    record = study.enrollment()
    assert record.ending_reason == "ineligible"
    assert record.ended_at is not None
    assert study.info()["ending_reason"] == "ineligible"


@pytest.mark.asyncio
async def test_end_study_with_custom_reason_reports_neutral(study, telemetry):
    """Test that unknown ending reasons are reported as ended-neutral."""
    await study.end_study("survey-complete")

    first_payload = telemetry.send.await_args_list[0].args[1]
    assert first_payload["data"] == {"study_state": "ended-neutral", "ending_name": "survey-complete"}
    assert study.enrollment().ending_reason == "survey-complete"


@pytest.mark.asyncio
async def test_end_study_calls_uninstall_hook_once(session_factory, prefs, telemetry, config, addon):
    """Test that the uninstall hook runs once after the ending pings."""
    hook = AsyncMock()
    service = StudyUtils(session_factory, prefs, telemetry, uninstall_hook=hook)
    service.setup(config, addon)
    service.set_variation(config.weighted_variations[0])

    await service.end_study(EndingReason.EXPIRED)
    await service.end_study(EndingReason.EXPIRED)

    hook.assert_awaited_once()


@pytest.mark.asyncio
async def test_close_releases_telemetry(study, telemetry):
    """Test that close closes the telemetry client."""
    await study.close()

    telemetry.close.assert_awaited_once()


def test_one_record_per_client(study, session_factory):
    """Test that repeated updates reuse the same enrollment row."""
    study.set_variation(Variation(name="control"))
    study.set_variation(Variation(name="treatment"))

    db = session_factory()
    try:
        assert db.query(StudyRecord).count() == 1
    finally:
        db.close()
