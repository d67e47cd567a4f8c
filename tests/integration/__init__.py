"""
Integration tests against a real PostgreSQL database.

These tests require DATABASE_URL to point at a disposable database; they are
skipped when it is not set. Migrations are applied on first use.
"""
