"""
WSGI / Flask-Migrate entry point.

Usage:
    flask --app wsgi db upgrade
    flask --app wsgi calculate-progress --full
    gunicorn wsgi:app
"""

from sitetrack import create_app

app = create_app()
