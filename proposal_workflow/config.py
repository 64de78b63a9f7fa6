"""
Proposal Workflow Service
Configuration classes for the Flask app factory.

Usage:
    config_name = os.getenv("APP_ENV", "development")
    app.config.from_object(config[config_name]())
"""

import os
import secrets

from proposal_workflow.models.proposal import DEFAULT_WORKFLOW_ID

# Random key for development; production must use a stable env var
_DEV_SECRET = secrets.token_hex(32)


def _flag(name, default="false"):
    return os.getenv(name, default).lower() in ("1", "true", "yes")


class Config:
    """Base configuration shared across all environments."""

    SECRET_KEY = os.getenv("SECRET_KEY", _DEV_SECRET)
    DEBUG = False
    TESTING = False

    # CORS
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")

    # Workflow
    WORKFLOW_DEFAULT_ID = os.getenv("WORKFLOW_DEFAULT_ID", DEFAULT_WORKFLOW_ID)
    WORKFLOW_SEED_DEFAULT = _flag("WORKFLOW_SEED_DEFAULT", "true")
    WORKFLOW_ENABLE_CANCELLATION = _flag("WORKFLOW_ENABLE_CANCELLATION")
    WORKFLOW_NOTIFY_RECIPIENTS = os.getenv("WORKFLOW_NOTIFY_RECIPIENTS")  # actor | next_role
    NOTIFICATION_DEFAULT_CHANNEL = os.getenv("NOTIFICATION_DEFAULT_CHANNEL", "IN_APP")

    # Email / SMTP (optional, log-only without MAIL_SERVER)
    MAIL_SERVER = os.getenv("MAIL_SERVER")
    MAIL_PORT = int(os.getenv("MAIL_PORT", "587"))
    MAIL_USE_TLS = _flag("MAIL_USE_TLS", "true")
    MAIL_USERNAME = os.getenv("MAIL_USERNAME")
    MAIL_PASSWORD = os.getenv("MAIL_PASSWORD")
    MAIL_DEFAULT_SENDER = os.getenv("MAIL_DEFAULT_SENDER", "noreply@clinic.local")

    LOG_LEVEL = os.getenv("LOG_LEVEL")


class DevelopmentConfig(Config):
    DEBUG = True


class TestingConfig(Config):
    TESTING = True
    WORKFLOW_SEED_DEFAULT = True
    WORKFLOW_ENABLE_CANCELLATION = False
    WORKFLOW_NOTIFY_RECIPIENTS = None
    MAIL_SERVER = None


class ProductionConfig(Config):
    DEBUG = False
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "")  # Must be set explicitly in production

    def __init__(self):
        if not os.getenv("SECRET_KEY"):
            raise RuntimeError("SECRET_KEY environment variable must be set in production")


# Environment name -> config class
config = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
    "default": DevelopmentConfig,
}
