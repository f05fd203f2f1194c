"""Environment-driven configuration for the ordinance portal.

``FLASK_ENV`` picks one of the config classes below; every tunable is read
through ``EnvReader`` so malformed values fall back to defaults and surface as
warnings in ``ENV_DIAGNOSTICS`` instead of failing at import.
"""
from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Callable, Mapping, TypeVar

T = TypeVar("T")

ENV_KEY = "FLASK_ENV"
DEFAULT_ENV = "development"
KNOWN_ENVS = ("development", "testing", "staging", "production")

_BOOL_WORDS = {
    "1": True, "true": True, "yes": True, "on": True,
    "0": False, "false": False, "no": False, "off": False,
}


@dataclass(frozen=True)
class EnvironmentInfo:
    name: str
    source: str
    raw_value: str


class EnvReader:
    """Typed, forgiving access to an environment mapping."""

    def __init__(self, data: Mapping[str, str] | None = None):
        self._data = dict(os.environ if data is None else data)
        self.warnings: list[str] = []

    def _raw(self, key: str) -> str | None:
        value = self._data.get(key)
        if value is None or not value.strip():
            return None
        return value.strip()

    def _typed(self, key: str, default: T, parse: Callable[[str], T], kind: str) -> T:
        value = self._raw(key)
        if value is None:
            return default
        try:
            return parse(value)
        except (TypeError, ValueError, KeyError):
            self.warnings.append(f"{key} expected {kind} but received {value!r}; using {default!r}.")
            return default

    def str(self, key: str, default: str | None = None) -> str | None:
        value = self._raw(key)
        return default if value is None else value

    def int(self, key: str, default: int = 0) -> int:
        return self._typed(key, default, int, "integer")

    def float(self, key: str, default: float = 0.0) -> float:
        return self._typed(key, default, float, "float")

    def bool(self, key: str, default: bool = False) -> bool:
        return self._typed(key, default, lambda v: _BOOL_WORDS[v.lower()], "boolean")


def resolve_environment(reader: EnvReader) -> EnvironmentInfo:
    raw_value = reader.str(ENV_KEY, DEFAULT_ENV)
    name = raw_value.lower()
    if name not in KNOWN_ENVS:
        raise RuntimeError(f"Invalid {ENV_KEY}={raw_value!r}. Expected one of {list(KNOWN_ENVS)}.")
    return EnvironmentInfo(name=name, source=ENV_KEY, raw_value=raw_value)


def database_url(reader: EnvReader) -> str | None:
    url = reader.str("DATABASE_URL")
    if url and url.startswith("postgres://"):
        # SQLAlchemy 2 only accepts the postgresql:// scheme.
        url = "postgresql://" + url[len("postgres://"):]
    return url


env = EnvReader()
ENV_INFO = resolve_environment(env)
_INSTANCE_DB = "sqlite:///" + os.path.join(
    os.path.abspath(os.path.dirname(__file__)), "..", "instance", "ordinance_portal.db"
)


class BaseConfig:
    FLASK_ENV = ENV_INFO.name
    SECRET_KEY = env.str("FLASK_SECRET_KEY", "devkey-please-change-in-production")
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_recycle": env.int("SQLALCHEMY_POOL_RECYCLE", 1800),
    }
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = "Lax"
    WTF_CSRF_ENABLED = True

    # Catalog cache
    CACHE_TYPE = env.str("CACHE_TYPE", "SimpleCache")
    CACHE_REDIS_URL = env.str("CACHE_REDIS_URL") or env.str("REDIS_URL")
    CACHE_DEFAULT_TIMEOUT = env.int("CACHE_DEFAULT_TIMEOUT", 120)
    ORDINANCE_CATALOG_CACHE_ENABLED = env.bool("ORDINANCE_CATALOG_CACHE_ENABLED", True)
    ORDINANCE_CATALOG_CACHE_TTL = env.int("ORDINANCE_CATALOG_CACHE_TTL", 300)

    # Plan reconciliation: fixed delay, bounded attempts
    PLAN_VERIFY_MAX_ATTEMPTS = env.int("PLAN_VERIFY_MAX_ATTEMPTS", 5)
    PLAN_VERIFY_DELAY_SECONDS = env.float("PLAN_VERIFY_DELAY_SECONDS", 1.0)
    PLAN_VERIFY_IN_BACKGROUND = env.bool("PLAN_VERIFY_IN_BACKGROUND", False)
    PLAN_VERIFY_WORKERS = env.int("PLAN_VERIFY_WORKERS", 4)
    # Tracked viewers with nothing in flight are released after this long unseen.
    PLAN_VIEWER_IDLE_SECONDS = env.int("PLAN_VIEWER_IDLE_SECONDS", 3600)

    # Visibility grouping keys
    SURVEY_GROUP_KEY = env.str("SURVEY_GROUP_KEY", "調査")
    UNCATEGORIZED_GROUP_KEY = env.str("UNCATEGORIZED_GROUP_KEY", "未分類")

    LOG_LEVEL = env.str("LOG_LEVEL", "WARNING")
    LOG_REDACT_PII = env.bool("LOG_REDACT_PII", True)


class DevelopmentConfig(BaseConfig):
    ENV = "development"
    DEBUG = True
    SESSION_COOKIE_SECURE = False
    SQLALCHEMY_DATABASE_URI = database_url(env) or _INSTANCE_DB


class TestingConfig(BaseConfig):
    ENV = "testing"
    TESTING = True
    WTF_CSRF_ENABLED = False
    SESSION_COOKIE_SECURE = False
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    PLAN_VERIFY_DELAY_SECONDS = 0.0


class StagingConfig(BaseConfig):
    ENV = "staging"
    DEBUG = False
    TESTING = False
    SESSION_COOKIE_SECURE = True
    PREFERRED_URL_SCHEME = "https"
    SQLALCHEMY_DATABASE_URI = database_url(env)


class ProductionConfig(StagingConfig):
    ENV = "production"
    LOG_LEVEL = env.str("LOG_LEVEL", "INFO")


config_map = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "staging": StagingConfig,
    "production": ProductionConfig,
}


def get_config():
    return config_map[ENV_INFO.name]


Config = get_config()
ENV_DIAGNOSTICS = {
    "active": ENV_INFO.name,
    "source": ENV_INFO.source,
    "variables": {ENV_INFO.source: ENV_INFO.raw_value},
    "warnings": tuple(env.warnings),
}
