"""Runtime settings for the API and the ingestion job.

Values come from the process environment, falling back to a dotenv-style
profile file: ``DEALFLOW_ENV_FILE`` when set, otherwise ``.env.<DEALFLOW_ENV>``
(``local`` by default) and then ``.env``. Shell variables always win over the
file.
"""
from __future__ import annotations

from dataclasses import dataclass
import os
from pathlib import Path
from typing import Iterator, Mapping, Tuple

from sqlalchemy.engine import URL


DEFAULT_TIMEZONE = "Asia/Kolkata"
DEFAULT_REQUEST_DELAY = 2.0
DEFAULT_RECORD_DELAY = 0.1
DEFAULT_HTTP_TIMEOUT = 30.0
DEFAULT_CORS_ORIGINS = ("http://localhost:3000",)
DEFAULT_DB_DRIVER = "postgresql+psycopg"
DEFAULT_DB_PORT = 5432
DEFAULT_DB_NAME = "dealflow"

TRUE_VALUES = {"1", "true", "yes", "on"}


def _search_roots() -> Iterator[Path]:
    yield Path.cwd()
    yield from Path(__file__).resolve().parents


def _resolve_env_file(candidate: str) -> Path | None:
    """Locate ``candidate`` in the working directory or above the package."""

    path = Path(candidate)
    if path.is_absolute():
        return path if path.is_file() else None

    seen: set[Path] = set()
    for root in _search_roots():
        root = root.resolve()
        if root in seen:
            continue
        seen.add(root)
        if (root / candidate).is_file():
            return root / candidate
    return None


def _unquote(value: str) -> str:
    value = value.strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in "\"'":
        return value[1:-1]
    # Unquoted values may carry a trailing comment.
    return value.split(" #", 1)[0].rstrip()


def _parse_env_file(path: Path) -> dict[str, str]:
    """Parse ``KEY=value`` lines, ignoring comments and ``export`` prefixes."""

    variables: dict[str, str] = {}
    for raw_line in path.read_text().splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        line = line.removeprefix("export ").lstrip()
        key, sep, value = line.partition("=")
        if not sep or not key.strip():
            continue
        variables[key.strip()] = _unquote(value)
    return variables


def _load_profile_env(env: Mapping[str, str]) -> dict[str, str]:
    explicit_file = env.get("DEALFLOW_ENV_FILE")
    if explicit_file:
        candidates = [explicit_file]
    else:
        candidates = [f".env.{env.get('DEALFLOW_ENV', 'local')}", ".env"]

    for candidate in candidates:
        path = _resolve_env_file(candidate)
        if path is not None:
            return _parse_env_file(path)
    return {}


def _build_database_url(env: Mapping[str, str]) -> str | None:
    """Construct a SQLAlchemy URL from discrete ``DEALFLOW_DB_*`` variables."""

    host = env.get("DEALFLOW_DB_HOST")
    if not host:
        return None

    username = env.get("DEALFLOW_DB_USERNAME")
    if not username:
        raise RuntimeError("DEALFLOW_DB_USERNAME must be set when using discrete database settings")
    if "DEALFLOW_DB_PASSWORD" not in env:
        raise RuntimeError("DEALFLOW_DB_PASSWORD must be set when using discrete database settings")

    raw_port = env.get("DEALFLOW_DB_PORT") or str(DEFAULT_DB_PORT)
    try:
        port = int(raw_port)
    except ValueError as exc:
        raise RuntimeError(f"DEALFLOW_DB_PORT must be an integer, got {raw_port!r}") from exc

    url = URL.create(
        drivername=env.get("DEALFLOW_DB_DRIVER") or DEFAULT_DB_DRIVER,
        username=username,
        password=env["DEALFLOW_DB_PASSWORD"],
        host=host,
        port=port,
        database=env.get("DEALFLOW_DB_NAME") or DEFAULT_DB_NAME,
    )
    return url.render_as_string(hide_password=False)


def _float_setting(env: Mapping[str, str], key: str, default: float) -> float:
    raw = env.get(key)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = float(raw)
    except ValueError as exc:
        raise RuntimeError(f"{key} must be a number, got {raw!r}") from exc
    if value < 0:
        raise RuntimeError(f"{key} must not be negative")
    return value


def _bool_setting(env: Mapping[str, str], key: str, default: bool = False) -> bool:
    raw = env.get(key)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in TRUE_VALUES


@dataclass(frozen=True)
class Settings:
    """Runtime configuration."""

    database_url: str
    timezone: str = DEFAULT_TIMEZONE
    request_delay: float = DEFAULT_REQUEST_DELAY
    record_delay: float = DEFAULT_RECORD_DELAY
    http_timeout: float = DEFAULT_HTTP_TIMEOUT
    reset_consecutive_on_sell: bool = False
    cors_origins: Tuple[str, ...] = DEFAULT_CORS_ORIGINS

    @staticmethod
    def load(env: Mapping[str, str] | None = None) -> "Settings":
        """Load settings from environment variables."""

        base_env = dict(os.environ if env is None else env)
        file_env = _load_profile_env(base_env)
        # Environment variables set in the shell take precedence over the file.
        merged_env = {**file_env, **base_env}

        database_url = merged_env.get("DEALFLOW_DATABASE_URL")
        if not database_url:
            database_url = _build_database_url(merged_env)
        if not database_url:
            raise RuntimeError(
                "DEALFLOW_DATABASE_URL must be set or provide discrete database settings via the env file"
            )

        origins_env = merged_env.get("DEALFLOW_CORS_ORIGINS")
        if origins_env:
            cors_origins = tuple(origin.strip() for origin in origins_env.split(",") if origin.strip())
        else:
            cors_origins = DEFAULT_CORS_ORIGINS

        return Settings(
            database_url=database_url,
            timezone=merged_env.get("DEALFLOW_TIMEZONE") or DEFAULT_TIMEZONE,
            request_delay=_float_setting(merged_env, "DEALFLOW_REQUEST_DELAY", DEFAULT_REQUEST_DELAY),
            record_delay=_float_setting(merged_env, "DEALFLOW_RECORD_DELAY", DEFAULT_RECORD_DELAY),
            http_timeout=_float_setting(merged_env, "DEALFLOW_HTTP_TIMEOUT", DEFAULT_HTTP_TIMEOUT),
            reset_consecutive_on_sell=_bool_setting(merged_env, "DEALFLOW_RESET_CONSECUTIVE_ON_SELL"),
            cors_origins=cors_origins,
        )


__all__ = ["Settings", "DEFAULT_TIMEZONE"]
