"""
WSGI entry point.

    FLASK_APP=wsgi.py flask db upgrade     # apply migrations
    <wsgi-server> wsgi:app                 # serve

APP_ENV selects the configuration (development | testing | production).
"""

from saleflow import create_app

app = create_app()
