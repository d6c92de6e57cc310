"""
backend/wsgi.py — WSGI entry point.

    flask --app backend.wsgi run

FLASK_ENV selects the config class (development | testing | production).
"""

import atexit
import os

from backend.polarcraft import create_app, shutdown_app

app = create_app(os.getenv("FLASK_ENV", "development"))
atexit.register(shutdown_app, app)
