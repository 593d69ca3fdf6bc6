"""SQL migrations of the PostgreSQL state schema, applied by migrate.py."""
