#!/usr/bin/env python3
"""
Posting Scheduler

Task queue that sequences posting work per job.

- One orchestration task runs at a time; tasks wait in a delay queue ordered
  by (scheduled_at, arrival).
- A task posts the job's non-terminal postings in batches of at most
  max_concurrent_posts, awaiting each batch before starting the next.
- Each outcome is written and published as soon as it arrives.
- Retryable failures go back to pending and are picked up by a new task after
  exponential backoff, up to max_attempts. Everything else is terminal.
- A job has at most one whole-job task queued. Postings reserved by a queued
  retry task are left to that task, so the attempt ceiling holds per posting.

The scheduler is the only component that decides retry-vs-terminal.

Usage:
    scheduler = PostingScheduler(repository, executor, notifier, driver)
    await scheduler.start()
    scheduler.enqueue_job(job_id)
    ...
    await scheduler.stop()
"""

import asyncio
import heapq
import itertools
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional, Set, Tuple

from .clock import Clock, SystemClock
from .errors import (
    DriverInitializationError,
    InvalidTransitionError,
    RepositoryUnavailableError,
    categorize_error,
    describe_error,
    is_retryable,
)
from .models import (
    Job,
    JobStatus,
    Outcome,
    Posting,
    PostingStatus,
    Task,
    TaskReason,
    aggregate_job_status,
    check_transition,
    count_outcomes,
)
from .notifier import ProgressNotifier, job_complete_event, job_start_event, posting_update_event
from .repository import PostingRepository

logger = logging.getLogger(__name__)


@dataclass
class SchedulerConfig:
    """Concurrency and retry settings."""
    max_concurrent_posts: int = 3
    max_attempts: int = 3
    retry_base_delay: float = 3.0
    retry_max_delay: float = 300.0

    def __post_init__(self):
        if self.max_concurrent_posts < 1:
            raise ValueError("max_concurrent_posts must be at least 1")
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")


@dataclass
class _PostingResult:
    posting_id: str
    status: PostingStatus
    retry: bool
    cost: float


def _batches(items: List[Posting], size: int) -> List[List[Posting]]:
    return [items[i:i + size] for i in range(0, len(items), size)]


class PostingScheduler:
    """
    Delay-queue scheduler driving the posting executor.

    Collaborators are injected; nothing here reads the environment or holds
    module-level state.
    """

    def __init__(
        self,
        repository: PostingRepository,
        executor,
        notifier: Optional[ProgressNotifier] = None,
        driver=None,
        config: Optional[SchedulerConfig] = None,
        clock: Optional[Clock] = None,
    ):
        self.repository = repository
        self.executor = executor
        self.notifier = notifier or ProgressNotifier()
        self.driver = driver
        self.config = config or SchedulerConfig()
        self.clock = clock or SystemClock()

        self._queue: List[Tuple[float, int, Task]] = []
        self._sequence = itertools.count()
        self._wakeup: Optional[asyncio.Event] = None
        self._loop_task: Optional[asyncio.Task] = None
        self._running = False
        self._active: Optional[Task] = None
        self._job_costs: Dict[str, float] = {}

        self._in_flight = 0
        self.max_in_flight = 0
        self._stats = {
            "tasks_processed": 0,
            "tasks_aborted": 0,
            "postings_succeeded": 0,
            "postings_failed": 0,
            "retries_scheduled": 0,
        }

    # ============== Ingress ==============

    def backoff_delay(self, attempt: int) -> float:
        """Delay before the retry that follows ``attempt`` (1-based)."""
        delay = self.config.retry_base_delay * (2 ** (max(1, attempt) - 1))
        return min(self.config.retry_max_delay, delay)

    def enqueue_job(self, job_id: str) -> Task:
        """
        Queue a posting task for every non-terminal posting of the job.

        A job that already has a whole-job task queued or running is not
        queued twice; the existing task is returned.
        """
        existing = self._whole_job_task(job_id)
        if existing is not None:
            logger.info(f"Job {job_id} already queued ({existing.id})")
            return existing

        task = Task(
            job_id=job_id,
            scheduled_at=self.clock.now(),
            max_attempts=self.config.max_attempts,
            reason=TaskReason.INITIAL,
        )
        self._push(task)
        logger.info(f"Enqueued job {job_id} ({task.id})")
        return task

    async def retry_posting(self, posting_id: str) -> Task:
        """
        Operator retry: reset one failed posting to pending and queue it.

        Raises KeyError for an unknown posting and InvalidTransitionError when
        the posting is not failed.
        """
        posting = await self.repository.load_posting(posting_id)
        if posting is None:
            raise KeyError(f"Posting {posting_id} not found")
        if posting.status != PostingStatus.FAILED:
            raise InvalidTransitionError(f"Only failed postings can be retried (posting is {posting.status.value})")

        updated = await self.repository.update_posting(
            posting_id,
            status=PostingStatus.PENDING,
            retry_count=posting.retry_count + 1,
            error_message=None,
        )
        await self.repository.update_job_status(posting.job_id, JobStatus.PENDING)
        await self._publish_posting(posting.job_id, updated)

        task = Task(
            job_id=posting.job_id,
            scheduled_at=self.clock.now(),
            max_attempts=self.config.max_attempts,
            posting_ids=(posting_id,),
            reason=TaskReason.OPERATOR,
        )
        self._push(task)
        logger.info(f"Operator retry of posting {posting_id} queued ({task.id}, retry #{updated.retry_count})")
        return task

    def _push(self, task: Task):
        heapq.heappush(self._queue, (task.scheduled_at, next(self._sequence), task))
        if self._wakeup is not None:
            self._wakeup.set()

    def _whole_job_task(self, job_id: str) -> Optional[Task]:
        for task in [self._active] + [entry[2] for entry in self._queue]:
            if task is not None and task.job_id == job_id and task.posting_ids is None:
                return task
        return None

    def _claimed_postings(self, job_id: str) -> Set[str]:
        """Posting ids reserved by the job's queued retry and operator tasks."""
        claimed: Set[str] = set()
        for _, _, task in self._queue:
            if task.job_id == job_id and task.posting_ids:
                claimed.update(task.posting_ids)
        return claimed

    # ============== Queue inspection ==============

    def pending_tasks(self) -> List[Task]:
        return [entry[2] for entry in sorted(self._queue)]

    def next_due_at(self) -> Optional[float]:
        return self._queue[0][0] if self._queue else None

    @property
    def active_task(self) -> Optional[Task]:
        return self._active

    @property
    def is_running(self) -> bool:
        return self._running

    def get_stats(self) -> Dict[str, object]:
        return {
            **self._stats,
            "queued_tasks": len(self._queue),
            "active_task": self._active.id if self._active else None,
            "active_job": self._active.job_id if self._active else None,
            "in_flight": self._in_flight,
            "max_in_flight": self.max_in_flight,
            "max_concurrent_posts": self.config.max_concurrent_posts,
            "max_attempts": self.config.max_attempts,
            "running": self._running,
        }

    # ============== Loop ==============

    def _pop_due(self) -> Optional[Task]:
        if self._queue and self._queue[0][0] <= self.clock.now():
            return heapq.heappop(self._queue)[2]
        return None

    async def run_due_tasks(self) -> int:
        """Run every task due at clock.now(), one at a time. Returns the count."""
        processed = 0
        task = self._pop_due()
        while task is not None:
            await self._run_task(task)
            processed += 1
            task = self._pop_due()
        return processed

    async def start(self):
        if self._running:
            return
        self._running = True
        self._wakeup = asyncio.Event()
        self._loop_task = asyncio.create_task(self._loop())
        logger.info(
            f"Posting scheduler started (max {self.config.max_concurrent_posts} concurrent posts, "
            f"{self.config.max_attempts} attempts)"
        )

    async def stop(self):
        """
        Stop the loop once the active task has finished.

        Queued tasks stay queued. Attempts are time-bounded, so the wait is too.
        """
        self._running = False
        if self._wakeup is not None:
            self._wakeup.set()
        if self._loop_task:
            if self._active is not None:
                logger.info(f"Waiting for task {self._active.id} to finish")
            await self._loop_task
            self._loop_task = None
        logger.info("Posting scheduler stopped")

    async def _loop(self):
        while self._running:
            task = self._pop_due()
            if task is not None:
                try:
                    await self._run_task(task)
                except Exception as e:
                    logger.exception(f"Scheduler loop error: {e}")
                continue

            self._wakeup.clear()
            next_due = self.next_due_at()
            timeout = None if next_due is None else max(0.0, next_due - self.clock.now())
            try:
                await asyncio.wait_for(self._wakeup.wait(), timeout=timeout)
            except asyncio.TimeoutError:
                pass

    # ============== Task execution ==============

    async def _run_task(self, task: Task):
        self._active = task
        logger.info(f"Running {task.reason.value} task {task.id} for job {task.job_id} (attempt {task.attempt}/{task.max_attempts})")
        try:
            await self._process(task)
            self._stats["tasks_processed"] += 1
        except (RepositoryUnavailableError, ConnectionError) as e:
            self._abort(task, e)
        finally:
            self._active = None

    async def _process(self, task: Task):
        job = await self.repository.load_job(task.job_id)
        if job is None:
            logger.warning(f"Task {task.id}: job {task.job_id} not found, dropping")
            return

        postings = await self.repository.load_pending_postings(job.id)
        if task.posting_ids is not None:
            wanted = set(task.posting_ids)
            postings = [p for p in postings if p.id in wanted]
        else:
            claimed = self._claimed_postings(job.id)
            if claimed:
                logger.info(f"Task {task.id}: leaving {len(claimed)} posting(s) to their queued retry")
                postings = [p for p in postings if p.id not in claimed]

        if not postings:
            logger.info(f"Task {task.id}: no open postings for job {job.id}")
            await self._finish(job)
            return

        await self.notifier.publish(job_start_event(job.id, len(postings)))
        await self.repository.update_job_status(job.id, JobStatus.POSTING)

        if self.driver is not None:
            try:
                await self.driver.start()
            except DriverInitializationError as e:
                await self._fail_all(job, postings, e)
                return

        retry_ids: List[str] = []
        for index, batch in enumerate(_batches(postings, self.config.max_concurrent_posts), start=1):
            logger.info(f"Job {job.id}: batch {index} with {len(batch)} posting(s)")
            results = await asyncio.gather(
                *(self._run_posting(job, posting, task) for posting in batch),
                return_exceptions=True,
            )
            errors = [r for r in results if isinstance(r, BaseException)]
            for result in results:
                if isinstance(result, BaseException):
                    continue
                self._job_costs[job.id] = self._job_costs.get(job.id, 0.0) + result.cost
                if result.retry:
                    retry_ids.append(result.posting_id)
            if errors:
                raise errors[0]

        if retry_ids:
            self._schedule_retry(task, retry_ids)

        await self._finish(job)

    async def _run_posting(self, job: Job, posting: Posting, task: Task) -> _PostingResult:
        if posting.status == PostingStatus.PENDING:
            posting = await self._transition(
                posting, PostingStatus.POSTING, last_attempt_at=datetime.now(),
            )
            await self._publish_posting(job.id, posting)
        else:
            logger.info(f"Posting {posting.id} was left in '{posting.status.value}', running it again")

        self._in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self._in_flight)
        try:
            outcome = await self.executor.execute(job, posting)
        except Exception as e:
            # Executors are expected to return failures, not raise them
            logger.exception(f"Executor raised for posting {posting.id}")
            outcome = Outcome.failure(describe_error(e), categorize_error(e))
        finally:
            self._in_flight -= 1

        retry = (
            not outcome.success
            and is_retryable(outcome.error_category)
            and task.attempt < task.max_attempts
        )

        if outcome.success:
            updated = await self._transition(
                posting,
                PostingStatus.SUCCESS,
                external_url=outcome.external_url,
                error_message=None,
                posted_at=datetime.now(),
            )
            self._stats["postings_succeeded"] += 1
        elif retry:
            updated = await self._transition(
                posting,
                PostingStatus.PENDING,
                error_message=outcome.error_message,
                retry_count=posting.retry_count + 1,
            )
        else:
            updated = await self._transition(
                posting, PostingStatus.FAILED, error_message=outcome.error_message,
            )
            self._stats["postings_failed"] += 1

        await self._publish_posting(job.id, updated)
        return _PostingResult(updated.id, updated.status, retry, outcome.cost)

    async def _transition(self, posting: Posting, target: PostingStatus, **fields) -> Posting:
        check_transition(posting.status, target)
        updated = await self.repository.update_posting(posting.id, status=target, **fields)
        board_name = posting.board.name if posting.board else posting.board_id
        logger.info(f"Posting {posting.id} ({board_name}): {posting.status.value} -> {target.value}")
        return updated

    def _schedule_retry(self, task: Task, posting_ids: List[str]):
        delay = self.backoff_delay(task.attempt)
        retry = Task(
            job_id=task.job_id,
            scheduled_at=self.clock.now() + delay,
            attempt=task.attempt + 1,
            max_attempts=task.max_attempts,
            posting_ids=tuple(posting_ids),
            reason=TaskReason.RETRY,
        )
        self._push(retry)
        self._stats["retries_scheduled"] += 1
        logger.info(
            f"Retry {retry.attempt}/{retry.max_attempts} for job {task.job_id} "
            f"({len(posting_ids)} posting(s)) in {delay:.1f}s"
        )

    def _abort(self, task: Task, error: Exception):
        self._stats["tasks_aborted"] += 1
        if task.attempt >= task.max_attempts:
            logger.error(f"Task {task.id} for job {task.job_id} aborted, store unavailable, giving up: {error}")
            return
        delay = self.backoff_delay(task.attempt)
        self._push(Task(
            job_id=task.job_id,
            scheduled_at=self.clock.now() + delay,
            attempt=task.attempt + 1,
            max_attempts=task.max_attempts,
            posting_ids=task.posting_ids,
            reason=TaskReason.INFRA,
        ))
        logger.error(f"Task {task.id} for job {task.job_id} aborted, store unavailable, re-queued in {delay:.1f}s: {error}")

    async def _fail_all(self, job: Job, postings: List[Posting], error: Exception):
        message = f"Browser driver initialization failed: {error}"
        logger.error(f"Job {job.id}: {message}")
        for posting in postings:
            if posting.status == PostingStatus.PENDING:
                posting = await self._transition(posting, PostingStatus.POSTING, last_attempt_at=datetime.now())
                await self._publish_posting(job.id, posting)
            updated = await self._transition(posting, PostingStatus.FAILED, error_message=message)
            await self._publish_posting(job.id, updated)
            self._stats["postings_failed"] += 1

        await self.repository.update_job_status(job.id, JobStatus.FAILED)
        counts = count_outcomes(await self.repository.load_postings(job.id))
        await self.notifier.publish(job_complete_event(
            job.id,
            JobStatus.FAILED.value,
            counts["success"],
            counts["total"],
            self._job_costs.pop(job.id, 0.0),
        ))

    async def _finish(self, job: Job):
        postings = await self.repository.load_postings(job.id)
        status = aggregate_job_status(p.status for p in postings)
        await self.repository.update_job_status(job.id, status)

        if status == JobStatus.POSTING:
            logger.info(f"Job {job.id} still has open postings")
            return

        counts = count_outcomes(postings)
        total_cost = self._job_costs.pop(job.id, 0.0)
        logger.info(
            f"Job {job.id} {status.value}: {counts['success']}/{counts['total']} posted, "
            f"AI cost ${total_cost:.4f}"
        )
        await self.notifier.publish(job_complete_event(
            job.id, status.value, counts["success"], counts["total"], total_cost,
        ))

    async def _publish_posting(self, job_id: str, posting: Posting):
        await self.notifier.publish(posting_update_event(
            job_id,
            posting.board_id,
            posting.status.value,
            external_url=posting.external_url,
            error_message=posting.error_message,
            board_name=posting.board.name if posting.board else None,
        ))
