"""Core domain package for modwatch.

Core contains the update-check, deduplication, pacing, and dispatch logic
without any CurseForge, Discord, or storage-specific code, keeping the
business logic portable.
"""
