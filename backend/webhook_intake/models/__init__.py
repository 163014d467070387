"""SQLModel table models; importing this package registers every table."""

from webhook_intake.models.queued_events import QueuedEvent, QueuedEventStatus

__all__ = ["QueuedEvent", "QueuedEventStatus"]
