"""
WSGI entry point and Flask-Migrate / Alembic target.

Usage:
    gunicorn wsgi:app
    flask --app wsgi db upgrade
    flask --app wsgi verify-audit-integrity
"""

from migas_audit import create_app

app = create_app()
