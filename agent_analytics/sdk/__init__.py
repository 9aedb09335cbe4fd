"""
SDK for Agent Analytics.

Lets instrumented agents emit session and task events.
"""

from .openai_client import RecordedOpenAI
from .recorder import SessionRecorder

__all__ = ["RecordedOpenAI", "SessionRecorder"]
