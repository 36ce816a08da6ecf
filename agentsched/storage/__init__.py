"""Persistence — SQLite store and API models."""
