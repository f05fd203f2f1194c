from __future__ import annotations

from flask import jsonify
from sqlalchemy.exc import SQLAlchemyError

from .extensions import db, login_manager


def configure_login_manager(app):
    """Attach Flask-Login handlers; every unauthenticated response is JSON."""
    login_manager.init_app(app)

    @login_manager.unauthorized_handler
    def _unauthorized():
        return jsonify({"success": False, "message": "Authentication required", "errors": {}}), 401

    @login_manager.user_loader
    def load_user(user_id: str):
        from .models import Profile

        if not user_id:
            return None
        try:
            return db.session.get(Profile, str(user_id))
        except SQLAlchemyError:
            _rollback_safely()
            return None


def _rollback_safely() -> None:
    try:
        db.session.rollback()
    except SQLAlchemyError:
        pass
