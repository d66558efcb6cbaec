"""Persistence: SQLAlchemy engine/session, tracked entities, warm rows, stored snapshots."""
