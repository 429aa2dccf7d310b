"""
WSGI / Flask-Migrate entry point.

Usage:
    flask --app wsgi db upgrade
    flask --app wsgi seed-processes
    gunicorn wsgi:app
"""

from approvals import create_app

app = create_app()
