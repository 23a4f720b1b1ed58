import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

BUSINESS_ID = "biz-1"


@pytest.fixture(autouse=True)
def _safe_test_config(monkeypatch):
    """Force deterministic, offline-safe config for tests.

    The repo loads .env on import; these overrides prevent real network calls
    (OpenAI, SMS, Redis, push) and reset process-wide caches between tests.
    """
    from bizagent.config import config, Config
    from bizagent import redis_client
    from bizagent.cooldown import reset_cooldown_tracker
    from bizagent.llm_agent import clear_llm_settings_cache
    from bizagent.snapshot import snapshot_provider

    overrides = {
        # A dummy key keeps the LLM tier reachable; tests inject fake clients.
        "OPENAI_API_KEY": "test",
        "AI_PROVIDER": "openai",
        "AI_BASE_URL": "",
        "API_KEY": "",
        "AGENT_HEURISTIC_REPLIES": False,
        "PUSH_NOTIFICATIONS_ENABLED": False,
        "SMS_API_KEY": "",
        "REDIS_URL": "",
    }
    for name, value in overrides.items():
        monkeypatch.setattr(Config, name, value, raising=False)
        # Keep the instance in sync for any code that reads instance attributes directly.
        monkeypatch.setattr(config, name, value, raising=False)

    monkeypatch.setattr(redis_client, "REDIS_AVAILABLE", False, raising=False)
    monkeypatch.setattr(redis_client, "redis_client", None, raising=False)

    reset_cooldown_tracker()
    clear_llm_settings_cache()
    snapshot_provider.invalidate()
    yield config
    reset_cooldown_tracker()
    clear_llm_settings_cache()
    snapshot_provider.invalidate()


@pytest.fixture
def session_factory(tmp_path):
    """Per-test SQLite file; file-backed so tool worker threads see the same data."""
    from bizagent.database import Base
    from bizagent import db_models  # noqa: F401

    engine = create_engine(f"sqlite:///{tmp_path / 'test.db'}", connect_args={"check_same_thread": False})
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def business(db):
    """A business with one master (Олена) working every day 09:00-18:00."""
    from bizagent.db_models import DBBusiness
    from bizagent.schedule import parse_week_spec
    from bizagent.services import MasterService

    biz = DBBusiness(id=BUSINESS_ID, name="Студія Краси")
    biz.working_hours_doc = parse_week_spec("mon-sun 09:00-18:00")
    db.add(biz)
    db.commit()
    MasterService.create_master(db, BUSINESS_ID, "Олена", working_hours=parse_week_spec("mon-sun 09:00-18:00"))
    db.refresh(biz)
    return biz


@pytest.fixture
def master(db, business):
    from bizagent.services import MasterService

    return MasterService.find_master_by_name(db, business.id, "Олена")


@pytest.fixture
def api_client(session_factory):
    """TestClient with the database dependencies pointed at the per-test SQLite file."""
    from fastapi.testclient import TestClient
    from bizagent.database import get_db, get_session_factory
    from bizagent.main import app

    def _get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
