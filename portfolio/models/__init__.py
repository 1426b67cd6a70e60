"""
Transformation Portfolio — SQLAlchemy models.

The shared ``db`` extension lives here so models, repositories and the
application factory all import the same instance:

    from portfolio.models import db
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
