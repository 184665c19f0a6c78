"""Adapters binding the core ports to SQLite, CurseForge, and Discord."""
