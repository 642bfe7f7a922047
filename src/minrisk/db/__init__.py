"""Persistence layer: SQLAlchemy models and the SQL provider store."""
