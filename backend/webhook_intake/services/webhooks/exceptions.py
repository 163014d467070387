"""Error types raised by the webhook queue pipeline."""

from __future__ import annotations


class QueueStorageError(RuntimeError):
    """The backing store rejected or failed a queue operation."""

    def __init__(self, operation: str, message: str | None = None) -> None:
        self.operation = operation
        super().__init__(message or f"Queue storage operation failed: {operation}")


class InvalidTransitionError(RuntimeError):
    """A state transition's compare-and-swap guard did not match."""

    def __init__(self, event_id: int, expected: str, target: str) -> None:
        self.event_id = event_id
        self.expected = expected
        self.target = target
        super().__init__(
            f"Queued event {event_id} is not {expected!r}; cannot move to {target!r}",
        )


class PayloadDecodeError(ValueError):
    """A queued payload could not be decoded into a known event shape."""

    def __init__(self, topic: str, reason: str) -> None:
        self.topic = topic
        self.reason = reason
        super().__init__(f"Undecodable {topic} payload: {reason}")
