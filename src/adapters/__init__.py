"""Adapters that plug SQLite and Discord into the core ports."""
