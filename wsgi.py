"""
WSGI / Flask CLI entry point.

Usage:
    flask --app wsgi db upgrade
    flask --app wsgi seed-deadline-options
    flask --app wsgi run-job overdue_stage_scanner
    gunicorn wsgi:app
"""

from app import create_app

app = create_app()
