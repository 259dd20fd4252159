"""
Database models package.

``db`` is the single Flask-SQLAlchemy handle. Model modules import it from
here; ``create_app`` binds it to the application.
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
