"""SQLAlchemy table definitions for the passport engine."""
