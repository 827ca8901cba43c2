"""User management on SQLAlchemy with a transactional outbox of user events."""

__version__ = "0.1.0"