"""Ordinance portal application factory."""
import logging
import os
from concurrent.futures import ThreadPoolExecutor
from typing import Any

from flask import Flask
from sqlalchemy.pool import StaticPool

from .authz import configure_login_manager
from .blueprints import register_blueprints
from .config import ENV_DIAGNOSTICS
from .extensions import cache, csrf, db
from .logging_config import configure_logging
from .resilience import register_resilience_handlers

logger = logging.getLogger(__name__)

MEMORY_DB = "sqlite:///:memory:"


def create_app(config: dict[str, Any] | None = None) -> Flask:
    app = Flask(__name__)
    _apply_config(app, config or {})
    _prepare_sqlite(app)

    db.init_app(app)
    csrf.init_app(app)
    _init_cache(app)
    configure_login_manager(app)
    register_blueprints(app)
    from . import models  # noqa: F401  # mapper event hooks

    configure_logging(app)
    register_resilience_handlers(app)
    _configure_plan_services(app)

    from .management import register_commands

    register_commands(app)
    return app


def _apply_config(app: Flask, overrides: dict[str, Any]) -> None:
    app.config.from_object("ordinance_portal.config.Config")
    app.config.update(overrides)
    if "DATABASE_URL" in overrides:
        app.config["SQLALCHEMY_DATABASE_URI"] = overrides["DATABASE_URL"]
    if app.config.get("TESTING"):
        app.config.setdefault("WTF_CSRF_ENABLED", False)

    app.config["ENV_DIAGNOSTICS"] = ENV_DIAGNOSTICS
    for warning in ENV_DIAGNOSTICS["warnings"]:
        logger.warning("Environment configuration warning: %s", warning)


def _prepare_sqlite(app: Flask) -> None:
    """Create the instance directory and drop server-pool options for SQLite URIs."""
    uri = app.config.get("SQLALCHEMY_DATABASE_URI") or ""
    if not uri.startswith("sqlite"):
        return

    if uri.startswith("sqlite:///") and uri != MEMORY_DB:
        os.makedirs(os.path.dirname(os.path.abspath(uri[len("sqlite:///"):])), exist_ok=True)

    options = {
        key: value
        for key, value in app.config.get("SQLALCHEMY_ENGINE_OPTIONS", {}).items()
        if key not in ("pool_size", "max_overflow", "pool_recycle")
    }
    # Verification may run on worker threads.
    options["connect_args"] = {"check_same_thread": False}
    if uri == MEMORY_DB:
        options["poolclass"] = StaticPool
    app.config["SQLALCHEMY_ENGINE_OPTIONS"] = options


def _init_cache(app: Flask) -> None:
    redis_url = app.config.get("CACHE_REDIS_URL")
    if app.config.get("CACHE_TYPE") == "RedisCache" and redis_url:
        backend = {"CACHE_TYPE": "RedisCache", "CACHE_REDIS_URL": redis_url}
    else:
        backend = {"CACHE_TYPE": "SimpleCache"}
    backend["CACHE_DEFAULT_TIMEOUT"] = app.config.get("CACHE_DEFAULT_TIMEOUT", 120)
    cache.init_app(app, config=backend)
    logger.info("Catalog cache backend: %s", backend["CACHE_TYPE"])


def _configure_plan_services(app: Flask) -> None:
    """Wire the record store, push feed, reconciliation machine, and session context."""
    from .services.notifications import PLAN_NOTIFICATIONS_KEY, FlashNotificationSink
    from .services.ordinance_catalog_service import RECORD_STORE_KEY
    from .services.plan_reconciliation_service import PlanReconciliationService
    from .services.record_store import TIER_CHANGE_FEED_KEY, SqlAlchemyRecordStore, TierChangeFeed
    from .services.viewer_session import SessionPlanBinder, ViewerSessionContext

    feed = TierChangeFeed()
    store = SqlAlchemyRecordStore(app=app, feed=feed)

    executor = None
    if app.config.get("PLAN_VERIFY_IN_BACKGROUND"):
        executor = ThreadPoolExecutor(
            max_workers=max(1, int(app.config.get("PLAN_VERIFY_WORKERS", 4))),
            thread_name_prefix="plan-verify",
        )

    notifier = FlashNotificationSink()
    reconciliation = PlanReconciliationService.from_config(
        app.config,
        store,
        notifier=notifier,
        executor=executor,
    )
    session_context = ViewerSessionContext(app, reconciliation)
    binder = SessionPlanBinder(reconciliation, session_context).bind()

    app.extensions[TIER_CHANGE_FEED_KEY] = feed
    app.extensions[RECORD_STORE_KEY] = store
    app.extensions["plan_reconciliation"] = reconciliation
    app.extensions[PLAN_NOTIFICATIONS_KEY] = notifier
    app.extensions["viewer_session"] = session_context
    app.extensions["session_plan_binder"] = binder
    logger.info(
        "Plan reconciliation ready (max_attempts=%s, delay=%ss, background=%s)",
        reconciliation.max_attempts,
        reconciliation.delay_seconds,
        executor is not None,
    )
