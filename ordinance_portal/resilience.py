"""Global resilience and error-handler registration.

Synopsis:
Registers teardown and error handlers for database rollback safety, record
store failures, plan change rejections, and CSRF failures.

Glossary:
- Resilience handler: Global request teardown/error behavior for known failures.
- Store failure: A RecordStoreError raised by the record store adapter.
"""

from __future__ import annotations

import logging

from flask import get_flashed_messages, request
from flask_wtf.csrf import CSRFError
from sqlalchemy.exc import DBAPIError, OperationalError, SQLAlchemyError

from .extensions import db
from .services.errors import MutationRejected, NotFound, StoreUnavailable
from .services.plan_tiers import InvalidPlanTarget
from .utils.api_responses import APIResponse

logger = logging.getLogger(__name__)


def register_resilience_handlers(app) -> None:
    """Install global DB rollback and JSON error handlers."""

    @app.teardown_request
    def _rollback_on_error(exc):
        try:
            if exc is not None:
                db.session.rollback()
        except SQLAlchemyError:
            logger.debug("Rollback during teardown failed", exc_info=True)

    @app.errorhandler(OperationalError)
    @app.errorhandler(DBAPIError)
    def _db_error_handler(error):
        try:
            db.session.rollback()
        except SQLAlchemyError:
            pass
        logger.warning("Database error on %s: %s", request.path, error)
        return APIResponse.unavailable()

    @app.errorhandler(StoreUnavailable)
    def _store_unavailable_handler(error):
        logger.warning("Record store unavailable on %s: %s", request.path, error)
        return APIResponse.unavailable()

    @app.errorhandler(NotFound)
    def _store_not_found_handler(error):
        logger.info("Record store lookup failed on %s: %s", request.path, error)
        return APIResponse.not_found("Viewer profile")

    @app.errorhandler(MutationRejected)
    def _mutation_rejected_handler(error):
        # Consumes the rollback notice flashed during this request.
        flashed = get_flashed_messages(category_filter=["error"])
        return APIResponse.error(
            message=flashed[-1] if flashed else "Your plan could not be updated. No changes were made.",
            errors={"reason": str(error)},
            status_code=409,
        )

    @app.errorhandler(InvalidPlanTarget)
    def _invalid_plan_handler(error):
        return APIResponse.validation_error({"plan": [str(error)]})

    @app.errorhandler(CSRFError)
    def _csrf_error_handler(err: CSRFError):
        details = {
            "path": request.path,
            "endpoint": request.endpoint,
            "remote_addr": request.headers.get("X-Forwarded-For", request.remote_addr),
            "reason": err.description,
        }
        logger.warning("CSRF validation failed: %s", details)
        return APIResponse.error(
            message="Your session expired or this form is out of date. Refresh and try again.",
            errors={"reason": err.description},
            status_code=400,
        )
