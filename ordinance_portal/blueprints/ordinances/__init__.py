from flask import Blueprint

ordinances_bp = Blueprint('ordinances', __name__)

from . import routes  # noqa: E402,F401
