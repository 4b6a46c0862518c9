#!/usr/bin/env python3
"""
Data Models for the Job Multi-Poster

Jobs, per-board postings, boards and the transient records produced while a
posting attempt runs. All status handling goes through the helpers at the
bottom of this module so that transitions stay consistent everywhere.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, Iterable, List, Optional, Tuple

from .errors import ErrorCategory, InvalidTransitionError


# ============== Enums ==============

class JobStatus(str, Enum):
    """Aggregate status of a job across all of its postings."""
    DRAFT = "draft"
    PENDING = "pending"
    POSTING = "posting"
    COMPLETED = "completed"
    PARTIAL = "partial"
    FAILED = "failed"


class PostingStatus(str, Enum):
    """Status of one (job, board) posting."""
    PENDING = "pending"
    POSTING = "posting"
    SUCCESS = "success"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (PostingStatus.SUCCESS, PostingStatus.FAILED)


class FieldRole(str, Enum):
    """Role of a form field detected on a board's posting form."""
    TITLE = "title"
    DESCRIPTION = "description"
    LOCATION = "location"
    COMPANY = "company"
    EMAIL = "email"
    SALARY = "salary"
    SUBMIT = "submit"
    OTHER = "other"

    @classmethod
    def parse(cls, value) -> "FieldRole":
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return cls.OTHER


class TaskReason(str, Enum):
    INITIAL = "initial"
    RETRY = "retry"
    OPERATOR = "operator"
    INFRA = "infra"


# ============== Entities ==============

@dataclass
class Board:
    """An external job board. Read-only to the posting engine."""
    id: str
    name: str
    base_url: str
    post_url: str
    selectors: Optional[Dict[str, str]] = None
    enabled: bool = True
    code: Optional[str] = None
    location: Optional[str] = None


@dataclass
class Job:
    """An employer-authored job listing."""
    id: str
    title: str
    description: str
    location: str
    company: str
    contact_email: str
    salary_min: Optional[int] = None
    salary_max: Optional[int] = None
    employment_type: Optional[str] = None
    department: Optional[str] = None
    status: JobStatus = JobStatus.PENDING
    created_at: datetime = field(default_factory=datetime.now)

    def salary_text(self) -> str:
        """Human readable salary range, empty when no salary was given."""
        if self.salary_min and self.salary_max:
            return f"${self.salary_min:,} - ${self.salary_max:,}"
        if self.salary_min:
            return f"${self.salary_min:,}+"
        if self.salary_max:
            return f"Up to ${self.salary_max:,}"
        return ""

    def value_for(self, role: FieldRole) -> str:
        """Value to type into a field with the given role."""
        values = {
            FieldRole.TITLE: self.title,
            FieldRole.DESCRIPTION: self.description,
            FieldRole.LOCATION: self.location,
            FieldRole.COMPANY: self.company,
            FieldRole.EMAIL: self.contact_email,
            FieldRole.SALARY: self.salary_text(),
        }
        return values.get(role, "")


@dataclass
class Posting:
    """One attempt record tying a job to a board."""
    id: str
    job_id: str
    board_id: str
    status: PostingStatus = PostingStatus.PENDING
    external_url: Optional[str] = None
    error_message: Optional[str] = None
    posted_at: Optional[datetime] = None
    retry_count: int = 0
    last_attempt_at: Optional[datetime] = None
    board: Optional[Board] = None


@dataclass
class FormFieldCandidate:
    """A form field selector proposed by form discovery."""
    role: FieldRole
    selector: str
    confidence: float
    label: Optional[str] = None
    placeholder: Optional[str] = None
    required: bool = False

    def to_dict(self) -> dict:
        return {
            "role": self.role.value,
            "selector": self.selector,
            "confidence": self.confidence,
            "label": self.label,
            "placeholder": self.placeholder,
            "required": self.required,
        }


@dataclass
class Outcome:
    """Structured result of one posting executor run."""
    success: bool
    external_url: Optional[str] = None
    error_message: Optional[str] = None
    screenshot: Optional[bytes] = None
    error_category: Optional[ErrorCategory] = None
    cost: float = 0.0
    used_discovery: bool = False
    cost_ceiling_exceeded: bool = False
    duration_ms: float = 0.0

    @classmethod
    def succeeded(cls, external_url: Optional[str] = None, **kwargs) -> "Outcome":
        return cls(success=True, external_url=external_url, **kwargs)

    @classmethod
    def failure(cls, message: str, category: ErrorCategory = ErrorCategory.AUTOMATION, **kwargs) -> "Outcome":
        return cls(success=False, error_message=message, error_category=category, **kwargs)

    @property
    def status(self) -> PostingStatus:
        return PostingStatus.SUCCESS if self.success else PostingStatus.FAILED


@dataclass
class Task:
    """One unit of queued orchestration work for a job."""
    job_id: str
    scheduled_at: float
    attempt: int = 1
    max_attempts: int = 3
    posting_ids: Optional[Tuple[str, ...]] = None
    reason: TaskReason = TaskReason.INITIAL
    id: str = field(default_factory=lambda: f"task_{uuid.uuid4().hex[:12]}")
    created_at: datetime = field(default_factory=datetime.now)

    @property
    def is_last_attempt(self) -> bool:
        return self.attempt >= self.max_attempts


# ============== Status rules ==============

_ALLOWED_TRANSITIONS = {
    PostingStatus.PENDING: {PostingStatus.POSTING},
    PostingStatus.POSTING: {PostingStatus.SUCCESS, PostingStatus.FAILED, PostingStatus.PENDING},
    PostingStatus.FAILED: {PostingStatus.PENDING},
    PostingStatus.SUCCESS: set(),
}


def check_transition(current: PostingStatus, target: PostingStatus) -> None:
    """
    Raise InvalidTransitionError unless ``current -> target`` is allowed.

    posting -> pending is the automatic retry re-queue, failed -> pending the
    operator reset. Success is final.
    """
    if target not in _ALLOWED_TRANSITIONS[PostingStatus(current)]:
        raise InvalidTransitionError(f"Posting cannot move from {current.value} to {target.value}")


def aggregate_job_status(statuses: Iterable[PostingStatus]) -> JobStatus:
    """Job status as a pure function of its postings' statuses."""
    statuses = [PostingStatus(s) for s in statuses]
    if not statuses:
        return JobStatus.FAILED
    if any(not s.is_terminal for s in statuses):
        return JobStatus.POSTING
    successes = sum(1 for s in statuses if s == PostingStatus.SUCCESS)
    if successes == len(statuses):
        return JobStatus.COMPLETED
    if successes == 0:
        return JobStatus.FAILED
    return JobStatus.PARTIAL


def count_outcomes(postings: List[Posting]) -> Dict[str, int]:
    """Success/failure/non-terminal counts for a job's postings."""
    counts = {"success": 0, "failed": 0, "open": 0, "total": len(postings)}
    for posting in postings:
        if posting.status == PostingStatus.SUCCESS:
            counts["success"] += 1
        elif posting.status == PostingStatus.FAILED:
            counts["failed"] += 1
        else:
            counts["open"] += 1
    return counts
