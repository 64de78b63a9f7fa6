"""
Proposal Workflow Service
Flask Application Factory.

Usage:
    from proposal_workflow import create_app
    app = create_app()           # defaults to APP_ENV or "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

import click
from flask import Flask
from flask_cors import CORS

from proposal_workflow.blueprints import EXTENSION_KEY
from proposal_workflow.config import config
from proposal_workflow.middleware.logging_config import configure_logging
from proposal_workflow.middleware.timing import init_request_timing
from proposal_workflow.services.workflow_service import SYSTEM_USER, WorkflowService

logger = logging.getLogger(__name__)


def create_app(config_name=None):
    """
    Create and configure the Flask application.

    Args:
        config_name: One of "development", "testing", "production".
                     Defaults to the APP_ENV env var, or "development".

    Returns:
        Configured Flask application instance.
    """
    if config_name is None:
        config_name = os.getenv("APP_ENV", "development")

    app = Flask(__name__)
    app.config.from_object(config[config_name]())

    # ── Structured logging (must be first) ───────────────────────────────
    configure_logging(app)

    # ── Extensions ───────────────────────────────────────────────────────
    cors_origins = app.config.get("CORS_ORIGINS", "*")
    if cors_origins and cors_origins != "*":
        CORS(app, origins=[o.strip() for o in cors_origins.split(",") if o.strip()])
    else:
        CORS(app)

    init_request_timing(app)

    # ── Workflow service graph ───────────────────────────────────────────
    app.extensions[EXTENSION_KEY] = WorkflowService.build(app.config)

    # ── Blueprints ───────────────────────────────────────────────────────
    from proposal_workflow.blueprints.config_bp import config_bp
    from proposal_workflow.blueprints.health_bp import health_bp
    from proposal_workflow.blueprints.metrics_bp import metrics_bp
    from proposal_workflow.blueprints.notification_bp import notification_bp
    from proposal_workflow.blueprints.workflow_bp import workflow_bp

    app.register_blueprint(workflow_bp)
    app.register_blueprint(config_bp)
    app.register_blueprint(notification_bp)
    app.register_blueprint(metrics_bp)
    app.register_blueprint(health_bp)

    # ── CLI commands ─────────────────────────────────────────────────────
    @app.cli.command("escalate-overdue")
    def escalate_overdue_cmd():
        """Escalate every proposal that is past its step deadline."""
        escalated = app.extensions[EXTENSION_KEY].escalate_overdue(SYSTEM_USER)
        logger.info("Escalated %d overdue proposal(s).", len(escalated))
        click.echo(f"Escalated {len(escalated)} overdue proposal(s).")
        for proposal_id in escalated:
            click.echo(f"  {proposal_id}")

    logger.debug("Application created with config=%s", config_name)
    return app
