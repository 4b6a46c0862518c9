"""
Repository interface for jobs, postings and boards.

The posting engine only talks to storage through PostingRepository. It needs
update_posting to be atomic per row and reads to reflect the latest write.
Implementations raise RepositoryUnavailableError when the store cannot be
reached.
"""

import uuid
from abc import ABC, abstractmethod
from dataclasses import replace
from typing import Dict, Iterable, List, Optional

from .errors import RepositoryUnavailableError
from .models import Board, Job, JobStatus, Posting, PostingStatus

POSTING_FIELDS = {
    "status",
    "external_url",
    "error_message",
    "posted_at",
    "retry_count",
    "last_attempt_at",
}


class PostingRepository(ABC):
    """Narrow storage interface consumed by the scheduler and executor."""

    @abstractmethod
    async def save_job(self, job: Job) -> Job:
        """Insert or replace a job (authoring surface, not used by the engine)."""

    @abstractmethod
    async def load_job(self, job_id: str) -> Optional[Job]:
        """Load a job, or None if it does not exist."""

    @abstractmethod
    async def load_pending_postings(self, job_id: str) -> List[Posting]:
        """Load the job's non-terminal postings with their boards attached."""

    @abstractmethod
    async def load_postings(self, job_id: str) -> List[Posting]:
        """Load every posting of the job with their boards attached."""

    @abstractmethod
    async def load_posting(self, posting_id: str) -> Optional[Posting]:
        pass

    @abstractmethod
    async def update_posting(self, posting_id: str, **fields) -> Posting:
        """Atomically update one posting row and return the new state."""

    @abstractmethod
    async def update_job_status(self, job_id: str, status: JobStatus) -> None:
        pass

    @abstractmethod
    async def create_postings(self, job_id: str, board_ids: Iterable[str]) -> List[Posting]:
        """Create one pending posting per selected board."""

    @abstractmethod
    async def list_boards(self) -> List[Board]:
        pass


def check_posting_fields(fields: Dict) -> None:
    unknown = set(fields) - POSTING_FIELDS
    if unknown:
        raise ValueError(f"Unknown posting fields: {sorted(unknown)}")


class InMemoryRepository(PostingRepository):
    """
    Process-local repository.

    Used by the CLI in dry runs and by the test suite. Stored objects are
    copied on the way in and out so callers never share mutable rows.
    """

    def __init__(self, boards: Optional[Iterable[Board]] = None):
        self._jobs: Dict[str, Job] = {}
        self._postings: Dict[str, Posting] = {}
        self._boards: Dict[str, Board] = {b.id: b for b in (boards or [])}
        self.available = True

    def _ensure_available(self):
        if not self.available:
            raise RepositoryUnavailableError("In-memory repository marked unavailable")

    def _hydrate(self, posting: Posting) -> Posting:
        return replace(posting, board=self._boards.get(posting.board_id))

    def add_board(self, board: Board) -> None:
        self._boards[board.id] = board

    async def save_job(self, job: Job) -> Job:
        self._ensure_available()
        self._jobs[job.id] = replace(job)
        return replace(job)

    async def load_job(self, job_id: str) -> Optional[Job]:
        self._ensure_available()
        job = self._jobs.get(job_id)
        return replace(job) if job else None

    async def load_pending_postings(self, job_id: str) -> List[Posting]:
        self._ensure_available()
        return [
            self._hydrate(p) for p in self._postings.values()
            if p.job_id == job_id and not p.status.is_terminal
        ]

    async def load_postings(self, job_id: str) -> List[Posting]:
        self._ensure_available()
        return [self._hydrate(p) for p in self._postings.values() if p.job_id == job_id]

    async def load_posting(self, posting_id: str) -> Optional[Posting]:
        self._ensure_available()
        posting = self._postings.get(posting_id)
        return self._hydrate(posting) if posting else None

    async def update_posting(self, posting_id: str, **fields) -> Posting:
        self._ensure_available()
        check_posting_fields(fields)
        if posting_id not in self._postings:
            raise KeyError(f"Posting {posting_id} not found")
        if "status" in fields:
            fields["status"] = PostingStatus(fields["status"])
        updated = replace(self._postings[posting_id], **fields)
        self._postings[posting_id] = updated
        return self._hydrate(updated)

    async def update_job_status(self, job_id: str, status: JobStatus) -> None:
        self._ensure_available()
        if job_id not in self._jobs:
            raise KeyError(f"Job {job_id} not found")
        self._jobs[job_id].status = JobStatus(status)

    async def create_postings(self, job_id: str, board_ids: Iterable[str]) -> List[Posting]:
        self._ensure_available()
        created = []
        for board_id in dict.fromkeys(board_ids):
            posting = Posting(id=str(uuid.uuid4()), job_id=job_id, board_id=board_id)
            self._postings[posting.id] = posting
            created.append(self._hydrate(posting))
        return created

    async def list_boards(self) -> List[Board]:
        self._ensure_available()
        return list(self._boards.values())
