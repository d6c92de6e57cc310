"""
extensions.py — Flask extension singletons.

Initialises SQLAlchemy as a module-level object so it can be imported anywhere
without creating circular dependencies.

Pattern:
    1. Create the extension object here (no app attached yet).
    2. Call init_app(app) inside the app factory in polarcraft/__init__.py.
    3. Import `db` from here wherever needed.

Stateful services that are NOT Flask extensions (CAPTCHA store, rate-limit
counters) are deliberately not created here. They are constructed per app in
create_app() and stored in app.extensions, so two apps in one process (tests)
never share counters or challenges. Use the accessors below to reach them.
"""

from flask import current_app
from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()

CAPTCHA_KEY = "polarcraft.captcha"
RATE_LIMITER_KEY = "polarcraft.rate_limiter"


def get_captcha_service():
    return current_app.extensions[CAPTCHA_KEY]


def get_rate_limiter():
    return current_app.extensions[RATE_LIMITER_KEY]
