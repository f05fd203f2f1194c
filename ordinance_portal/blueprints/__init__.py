import logging

logger = logging.getLogger(__name__)


def register_blueprints(app):
    """Register all application blueprints under the /api prefix."""
    from .core import core_bp
    from .ordinances import ordinances_bp
    from .plan import plan_bp

    for blueprint in (core_bp, ordinances_bp, plan_bp):
        app.register_blueprint(blueprint, url_prefix='/api')
    logger.debug("Registered blueprints: %s", ", ".join(app.blueprints))
