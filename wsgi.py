"""
WSGI / Flask-Migrate entry point.

Usage:
    gunicorn wsgi:app
    flask db migrate -m "description"
    flask db upgrade
    flask run-job daily_digest
"""

from opspilot import create_app

app = create_app()
