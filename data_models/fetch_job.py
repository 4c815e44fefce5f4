"""Fetch job ledger and batch run schemas."""

from enum import Enum

from pydantic import BaseModel, Field

class FetchJobStatus(str, Enum):
    """Lifecycle of a (subreddit, keyword) work unit."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class BatchResult(BaseModel):
    """Outcome of one time-boxed batch invocation.

    ``next_batch`` is 0 once the whole matrix has been visited. When the
    runtime ceiling cut the batch short, ``resume_offset`` holds the index
    of the first unit inside ``next_batch`` that still needs to run.
    """

    batch_number: int
    batch_size: int
    next_batch: int
    resume_offset: int = 0
    total_units: int
    units_attempted: int = 0
    units_completed: int = 0
    units_failed: int = 0
    posts_found: int = 0
    posts_saved: int = 0
    stopped_early: bool = False
    elapsed_seconds: float = 0.0
    errors: list[str] = Field(default_factory=list)

    @property
    def is_exhausted(self) -> bool:
        return self.next_batch == 0 and not self.stopped_early
