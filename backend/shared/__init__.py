"""Shared persistence layer: database pool, cache, models, repositories."""
