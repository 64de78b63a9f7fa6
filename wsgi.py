"""
WSGI / Flask CLI entry point.

Usage:
    gunicorn wsgi:app
    FLASK_APP=wsgi flask escalate-overdue
"""

from proposal_workflow import create_app

app = create_app()
