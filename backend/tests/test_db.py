from sqlalchemy import inspect, text


def test_settings_from_env(monkeypatch):
    url = "sqlite:///:memory:"
    monkeypatch.setenv("DATABASE_URL", url)
    monkeypatch.setenv("DB_ECHO", "0")

    from plaudsync import config
    from plaudsync.db import database
    assert config.settings.DATABASE_URL == url
    assert str(database.engine.url) == url
    with database.engine.connect() as conn:
        result = conn.execute(text("SELECT 1")).scalar()
        assert result == 1


def test_schema_has_pipeline_tables():
    from plaudsync.db import database

    database.create_tables()
    tables = set(inspect(database.engine).get_table_names())
    assert {"users", "api_sessions", "recordings", "transcriptions", "provider_configs"} <= tables


def test_sync_settings(monkeypatch):
    monkeypatch.setenv("SYNC_WEBHOOK_URL", "http://hooks:5678/webhook/sync")
    monkeypatch.setenv("SYNC_WEBHOOK_API_KEY", "secret")
    monkeypatch.setenv("SYNC_MIN_INTERVAL", "")

    from importlib import reload
    from plaudsync import config as config_module

    reload(config_module)

    assert config_module.settings.SYNC_WEBHOOK_URL == "http://hooks:5678/webhook/sync"
    assert config_module.settings.SYNC_WEBHOOK_API_KEY == "secret"
    # Empty values fall back to the in-code default.
    assert config_module.settings.SYNC_MIN_INTERVAL == 60.0
