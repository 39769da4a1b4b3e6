# tests/test_config.py
from pathlib import Path

import pytest
from sqlalchemy.engine import make_url

from dealflow.config import DEFAULT_CORS_ORIGINS, Settings


def test_load_defaults(tmp_path: Path):
    settings = Settings.load(
        {"DEALFLOW_DATABASE_URL": "sqlite:///deals.db", "DEALFLOW_ENV_FILE": str(tmp_path / "missing.env")}
    )

    assert settings.database_url == "sqlite:///deals.db"
    assert settings.timezone == "Asia/Kolkata"
    assert settings.request_delay == 2.0
    assert settings.record_delay == 0.1
    assert settings.http_timeout == 30.0
    assert settings.reset_consecutive_on_sell is False
    assert settings.cors_origins == DEFAULT_CORS_ORIGINS


def test_load_from_env_file(tmp_path: Path):
    env_file = tmp_path / ".env.test"
    env_file.write_text(
        """
# database
export DEALFLOW_DB_HOST=db.internal
DEALFLOW_DB_USERNAME=deal user
DEALFLOW_DB_PASSWORD="p@ss"
DEALFLOW_DB_PORT=6432
DEALFLOW_REQUEST_DELAY=0.5
DEALFLOW_RESET_CONSECUTIVE_ON_SELL=yes
DEALFLOW_CORS_ORIGINS=http://a.example, http://b.example
"""
    )

    settings = Settings.load({"DEALFLOW_ENV_FILE": str(env_file)})

    url = make_url(settings.database_url)
    assert url.drivername == "postgresql+psycopg"
    assert (url.username, url.password) == ("deal user", "p@ss")
    assert (url.host, url.port, url.database) == ("db.internal", 6432, "dealflow")
    assert settings.request_delay == 0.5
    assert settings.reset_consecutive_on_sell is True
    assert settings.cors_origins == ("http://a.example", "http://b.example")


def test_environment_overrides_file(tmp_path: Path):
    env_file = tmp_path / "override.env"
    env_file.write_text("DEALFLOW_DATABASE_URL=sqlite:///file.db\nDEALFLOW_TIMEZONE=UTC\n")

    settings = Settings.load(
        {"DEALFLOW_ENV_FILE": str(env_file), "DEALFLOW_DATABASE_URL": "sqlite:///shell.db"}
    )

    assert settings.database_url == "sqlite:///shell.db"
    assert settings.timezone == "UTC"


def test_missing_database_settings(tmp_path: Path):
    with pytest.raises(RuntimeError):
        Settings.load({"DEALFLOW_ENV_FILE": str(tmp_path / "missing.env")})


def test_discrete_settings_require_credentials(tmp_path: Path):
    with pytest.raises(RuntimeError):
        Settings.load({"DEALFLOW_ENV_FILE": str(tmp_path / "missing.env"), "DEALFLOW_DB_HOST": "db"})


@pytest.mark.parametrize("value", ["fast", "-1"])
def test_invalid_delay(tmp_path: Path, value: str):
    with pytest.raises(RuntimeError):
        Settings.load(
            {
                "DEALFLOW_ENV_FILE": str(tmp_path / "missing.env"),
                "DEALFLOW_DATABASE_URL": "sqlite://",
                "DEALFLOW_RECORD_DELAY": value,
            }
        )


def test_falls_back_to_plain_env_file(tmp_path: Path, monkeypatch):
    (tmp_path / ".env").write_text("DEALFLOW_DATABASE_URL=sqlite:///fallback.db  # local copy\n")
    monkeypatch.chdir(tmp_path)

    settings = Settings.load({"DEALFLOW_ENV": "no-such-profile"})

    assert settings.database_url == "sqlite:///fallback.db"
