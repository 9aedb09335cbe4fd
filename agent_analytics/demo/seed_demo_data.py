# agent_analytics/demo/seed_demo_data.py

from datetime import datetime, timedelta, timezone
from typing import Optional

from agent_analytics.config.loader import Settings, StorageConfig
from agent_analytics.core.service import AnalyticsService
from agent_analytics.sdk.recorder import SessionRecorder
from agent_analytics.storage.models import Environment
from agent_analytics.storage.repository import initialize_schema

DEMO_ORG = "org_demo"


def seed(service: AnalyticsService, org_id: str = DEMO_ORG, now: Optional[datetime] = None) -> int:
    """Record three demo sessions: a clean one, a failed one and one still running.

    Returns:
        Number of events accepted
    """
    now = now or datetime.now(timezone.utc)
    accepted = 0

    def sink(events):
        nonlocal accepted
        accepted += service.ingest(org_id, events).accepted

    def ticking(start: datetime):
        instants = (start + timedelta(seconds=30 * i) for i in range(1000))
        return lambda: next(instants)

    clean = SessionRecorder("user_alice", "code-assistant", sink, clock=ticking(now - timedelta(hours=5)))
    clean.start(client_info={"ide": "vscode", "ide_version": "1.92", "os": "macos", "os_version": "14.5"})
    clean.task_start(task_type="refactor")
    clean.task_complete(tokens_input=1200, tokens_output=300, duration_ms=4100, task_type="refactor")
    clean.feedback(positive=True)
    clean.end()

    failed = SessionRecorder("user_bob", "code-assistant", sink, clock=ticking(now - timedelta(hours=3)))
    failed.start()
    failed.task_start(task_type="test_generation")
    failed.task_complete(tokens_input=4000, tokens_output=1000, duration_ms=9800, task_type="test_generation")
    failed.task_error("RATE_LIMITED", "Provider returned 429", duration_ms=150)
    failed.end()

    running = SessionRecorder(
        "user_alice", "review-bot", sink,
        environment=Environment.STAGING,
        clock=ticking(now - timedelta(minutes=20)),
    )
    running.start()
    running.tool_call("git_diff", duration_ms=85)
    running.task_start(task_type="review")

    return accepted


if __name__ == "__main__":
    settings = Settings(storage=StorageConfig(backend="sqlite"))
    initialize_schema(settings.storage.db_path)
    count = seed(AnalyticsService(settings=settings))
    print(f"Demo session data inserted: {count} events for {DEMO_ORG}")
