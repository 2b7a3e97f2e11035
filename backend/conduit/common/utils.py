from datetime import UTC, datetime
from typing import Any

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker


def utcnow() -> datetime:
    return datetime.now(UTC)


def ensure_utc(value: datetime | None) -> datetime | None:
    """
    Attach UTC to naive datetimes read back from the database.
    SQLite drops tzinfo even for DateTime(timezone=True) columns.
    """
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=UTC)


def get_by_path(data: object, path: str, default: object = None) -> object:
    """
    Look up a dot path ("user.address.city", "items.0.id") in nested dicts and lists.
    Missing segments resolve to `default`, never raise.
    """
    if not path:
        return default

    current = data
    for segment in path.split("."):
        if isinstance(current, dict):
            if segment not in current:
                return default
            current = current[segment]
        elif isinstance(current, list | tuple) and segment.lstrip("-").isdigit():
            index = int(segment)
            if not -len(current) <= index < len(current):
                return default
            current = current[index]
        else:
            return default
    return current


def set_by_path(data: dict, path: str, value: object) -> None:
    """
    Write `value` at a dot path, creating intermediate dicts.
    A non-dict value sitting on the way is replaced by a dict.
    """
    segments = path.split(".")
    current = data
    for segment in segments[:-1]:
        child = current.get(segment)
        if not isinstance(child, dict):
            child = {}
            current[segment] = child
        current = child
    current[segments[-1]] = value


def create_session_factory(database_url: str) -> sessionmaker[Session]:
    """Create a sessionmaker bound to a new engine for `database_url`."""
    engine_kwargs: dict = {"pool_pre_ping": True}
    if database_url.startswith("sqlite"):
        engine_kwargs = {"connect_args": {"check_same_thread": False}}
    engine = create_engine(database_url, **engine_kwargs)
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


REDACTED = "[REDACTED]"
SENSITIVE_KEYS = frozenset(
    {
        "password",
        "secret",
        "token",
        "api_key",
        "apikey",
        "authorization",
        "proxy_authorization",
        "x_api_key",
        "cookie",
        "access_token",
        "refresh_token",
        "client_secret",
    }
)


def sanitize_for_storage(data: Any) -> Any:
    """
    Copy of `data` with the values of credential-like keys replaced by "[REDACTED]".
    Keys are compared case-insensitively, with "-" and "_" treated alike.
    """
    if isinstance(data, dict):
        return {
            key: (
                REDACTED
                if isinstance(key, str) and key.lower().replace("-", "_") in SENSITIVE_KEYS
                else sanitize_for_storage(value)
            )
            for key, value in data.items()
        }
    if isinstance(data, list):
        return [sanitize_for_storage(item) for item in data]
    return data
