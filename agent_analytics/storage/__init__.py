"""
Storage layer for Agent Analytics.

Event models, the in-memory store and the SQLite repository.
"""
