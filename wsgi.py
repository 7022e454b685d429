"""
WSGI / Flask-Migrate entry point.

Usage:
    flask --app wsgi db upgrade
    flask --app wsgi run-job threshold_sweep
    gunicorn wsgi:app
"""

from agromonitor import create_app

app = create_app()
