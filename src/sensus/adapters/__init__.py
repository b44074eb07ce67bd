"""Adapters that satisfy the core ports (SQLite, JSON files, Gemini over HTTP)."""
