"""
WSGI / Flask-Migrate entry point.

Usage:
    flask --app wsgi db upgrade
    flask --app wsgi seed-methods
    flask --app wsgi seed-apps
"""

from vision import create_app

app = create_app()
