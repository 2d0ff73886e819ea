"""
extensions.py — Flask extension singletons.

Initialises SQLAlchemy and marshmallow as module-level objects so they can be
imported anywhere without creating circular dependencies.

Pattern:
    1. Create the extension object here (no app attached yet).
    2. Call init_app(app) inside the app factory in app/__init__.py.
    3. Import `db` or `ma` from here wherever needed.

    from backend.app.extensions import db, ma
"""

from flask_sqlalchemy import SQLAlchemy
from flask_marshmallow import Marshmallow

db = SQLAlchemy()

# Marshmallow instance. Used for the read-side output schemas in
# app/schemas/ (ma.Schema subclasses that serialise ORM rows).
#
# Schema inheritance rule:
#   Request validation schemas inherit from marshmallow.Schema directly, NOT
#   from ma.Schema, so unit tests can instantiate them without an app context.
#   Output schemas are only used inside request handlers and may use ma.Schema.
ma = Marshmallow()
