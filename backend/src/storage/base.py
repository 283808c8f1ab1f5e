"""
SQLAlchemy declarative base for all database models.

Kept separate so model modules and the database manager can import it
without importing each other.
"""

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """SQLAlchemy declarative base for all models."""

    pass
