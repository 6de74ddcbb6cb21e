"""Database package: SQLAlchemy models and sessions, Redis helpers."""
