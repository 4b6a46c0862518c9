"""
Core components of the job multi-poster.

Modules:
- models: jobs, postings, boards, outcomes, tasks and status rules
- errors: error taxonomy and retry eligibility
- clock: time source for the scheduler
- repository: storage interface (and an in-memory implementation)
- notifier: per-job progress events
- executor: one posting attempt (strategy or AI form discovery)
- scheduler: task queue, batching and retry policy

The executor is imported from core.executor directly; it depends on the
boards package.
"""

from .clock import Clock, SystemClock
from .errors import (
    AutomationError,
    BoardConfigurationError,
    DiscoveryError,
    DriverInitializationError,
    ErrorCategory,
    FormNotFoundError,
    InvalidTransitionError,
    ProviderError,
    RepositoryUnavailableError,
    categorize_error,
)
from .models import (
    Board,
    FieldRole,
    FormFieldCandidate,
    Job,
    JobStatus,
    Outcome,
    Posting,
    PostingStatus,
    Task,
    TaskReason,
    aggregate_job_status,
)
from .notifier import ProgressEvent, ProgressNotifier
from .repository import InMemoryRepository, PostingRepository
from .scheduler import PostingScheduler, SchedulerConfig

__all__ = [
    "AutomationError",
    "Board",
    "BoardConfigurationError",
    "Clock",
    "DiscoveryError",
    "DriverInitializationError",
    "ErrorCategory",
    "FieldRole",
    "FormFieldCandidate",
    "FormNotFoundError",
    "InMemoryRepository",
    "InvalidTransitionError",
    "Job",
    "JobStatus",
    "Outcome",
    "Posting",
    "PostingRepository",
    "PostingScheduler",
    "PostingStatus",
    "ProgressEvent",
    "ProgressNotifier",
    "ProviderError",
    "RepositoryUnavailableError",
    "SchedulerConfig",
    "SystemClock",
    "Task",
    "TaskReason",
    "aggregate_job_status",
    "categorize_error",
]
