"""Flask extension singletons, bound to the app in ``create_app``."""
from __future__ import annotations

from flask_caching import Cache
from flask_login import LoginManager
from flask_sqlalchemy import SQLAlchemy
from flask_wtf.csrf import CSRFProtect

__all__ = ["db", "csrf", "cache", "login_manager"]

db = SQLAlchemy()
csrf = CSRFProtect()
# Holds the serialized ordinance catalog.
cache = Cache()

login_manager = LoginManager()
login_manager.session_protection = "basic"
