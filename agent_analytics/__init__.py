"""
Agent Analytics.

Event ingestion and session analytics for AI agent deployments.
"""

__version__ = "0.1.0"
