"""Exception hierarchy for the health engine.

Only genuinely invalid input surfaces as an error to callers. Cache and
text-generation failures are degraded inside the service and never raised.
"""

from __future__ import annotations


class HealthEngineError(Exception):
    """Base class for health engine errors."""


class ClientNotFoundError(HealthEngineError):
    """The client id does not resolve to a known client."""

    def __init__(self, client_id: str) -> None:
        super().__init__(f"Client not found: {client_id}")
        self.client_id = client_id


class ClientNotScorableError(HealthEngineError):
    """The client exists but is not in a scorable lifecycle status."""

    def __init__(self, client_id: str, status: str) -> None:
        super().__init__(
            f"Client {client_id} has status {status!r}; only Active clients are scored"
        )
        self.client_id = client_id
        self.status = status


class InvalidRecordError(HealthEngineError):
    """An operational record has malformed or missing fields."""

    def __init__(self, kind: str, record_id: str, reason: str) -> None:
        super().__init__(f"Invalid {kind} record {record_id!r}: {reason}")
        self.kind = kind
        self.record_id = record_id
        self.reason = reason
