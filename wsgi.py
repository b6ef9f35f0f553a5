"""
WSGI / Flask-Migrate entry point.

Usage:
    flask --app wsgi db init       # first time only (creates migrations/)
    flask --app wsgi db migrate -m "description"
    flask --app wsgi db upgrade
    flask --app wsgi purge-expired-guidance
"""

from grievance_engine import create_app

app = create_app()
