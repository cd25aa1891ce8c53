"""
Result values returned by the dispatch engine.
"""

from typing import List, Optional

from pydantic import BaseModel, Field


class ClaimResult(BaseModel):
    """Outcome of a ledger claim. A lost claim is a normal result, not an error."""
    claimed: bool
    dispatch_id: Optional[str] = None


class TransportResult(BaseModel):
    """Outcome of one HTTP POST to a push endpoint."""
    ok: bool
    status_code: int = 0
    error: Optional[str] = None
    transport: Optional[str] = None

    @property
    def is_gone(self) -> bool:
        """404/410 mean the subscription no longer exists at the push service."""
        return self.status_code in (404, 410)


class DeliveryFailure(BaseModel):
    """One failed endpoint inside a delivery summary."""
    host: str = ""
    status: int = 0
    transport: Optional[str] = None
    error: Optional[str] = None


class DeliverySummary(BaseModel):
    """Aggregate outcome of delivering to every subscription of one user."""
    attempted: int = 0
    sent: int = 0
    failed: int = 0
    deactivated: int = 0
    failures: List[DeliveryFailure] = Field(default_factory=list)


class ScheduleFailure(BaseModel):
    """A schedule whose processing failed during a batch pass."""
    schedule_id: str
    error: str


class ResolveScope(BaseModel):
    """Restricts a resolver pass to one workspace, optionally one user."""
    workspace_id: int
    user_id: Optional[int] = None


class BatchResult(BaseModel):
    """Aggregate counters for one resolver pass."""
    processed: int = 0
    due: int = 0
    sent: int = 0
    skipped: int = 0
    skipped_not_due_yet: int = 0
    skipped_already_dispatched_today: int = 0
    skipped_deadline_exceeded: int = 0
    push_attempted: int = 0
    push_failed: int = 0
    push_deactivated: int = 0
    failure_count: int = 0
    failures: List[ScheduleFailure] = Field(default_factory=list)

    def add_delivery(self, summary: DeliverySummary) -> None:
        self.push_attempted += summary.attempted
        self.push_failed += summary.failed
        self.push_deactivated += summary.deactivated

    def add_failure(self, schedule_id: str, error: str) -> None:
        self.failures.append(ScheduleFailure(schedule_id=schedule_id, error=error))
        self.failure_count = len(self.failures)


class NotificationContent(BaseModel):
    """What the service worker displays for an empty-body push."""
    title: str = "Medicine reminder"
    body: str = "It is time to log a scheduled dose."
    url: str = "/"
