#!/usr/bin/env python3
"""
Progress notifications for posting jobs.

Publishes job-start, posting-update and job-complete events on a topic per
job. Delivery is best-effort to whoever is subscribed at publish time; there
is no persistence or replay.

Optionally forwards job-complete summaries to a Slack/Discord style webhook.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Set

import aiohttp

logger = logging.getLogger(__name__)

JOB_START = "job-start"
POSTING_UPDATE = "posting-update"
JOB_COMPLETE = "job-complete"


@dataclass
class ProgressEvent:
    kind: str
    job_id: str
    payload: Dict[str, Any]

    def to_dict(self) -> Dict[str, Any]:
        return {"event": self.kind, "job_id": self.job_id, **self.payload}


def job_start_event(job_id: str, total_boards: int) -> ProgressEvent:
    return ProgressEvent(JOB_START, job_id, {"total_boards": total_boards, "status": "posting"})


def posting_update_event(
    job_id: str,
    board_id: str,
    status: str,
    external_url: Optional[str] = None,
    error_message: Optional[str] = None,
    board_name: Optional[str] = None,
) -> ProgressEvent:
    payload = {"board_id": board_id, "status": status}
    if board_name:
        payload["board_name"] = board_name
    if external_url:
        payload["external_url"] = external_url
    if error_message:
        payload["error_message"] = error_message
    return ProgressEvent(POSTING_UPDATE, job_id, payload)


def job_complete_event(
    job_id: str,
    overall_status: str,
    success_count: int,
    total_count: int,
    total_cost: float = 0.0,
) -> ProgressEvent:
    return ProgressEvent(JOB_COMPLETE, job_id, {
        "overall_status": overall_status,
        "success_count": success_count,
        "total_count": total_count,
        "total_cost": round(total_cost, 6),
    })


class Subscription:
    """A subscriber's view of one job topic."""

    def __init__(self, notifier: "ProgressNotifier", job_id: str):
        self.job_id = job_id
        self._notifier = notifier
        self._queue: asyncio.Queue = asyncio.Queue()

    def deliver(self, event: ProgressEvent):
        self._queue.put_nowait(event)

    async def get(self, timeout: Optional[float] = None) -> ProgressEvent:
        if timeout is None:
            return await self._queue.get()
        return await asyncio.wait_for(self._queue.get(), timeout)

    def pending(self) -> List[ProgressEvent]:
        """Drain everything delivered so far without waiting."""
        events = []
        while not self._queue.empty():
            events.append(self._queue.get_nowait())
        return events

    def close(self):
        self._notifier.unsubscribe(self)

    def __aiter__(self):
        return self

    async def __anext__(self) -> ProgressEvent:
        return await self.get()


class ProgressNotifier:
    """
    In-process publish channel keyed by job identifier.

    Usage:
        notifier = ProgressNotifier()
        sub = notifier.subscribe(job_id)
        event = await sub.get(timeout=5)
        sub.close()
    """

    def __init__(self, webhook_url: str = "", webhook_timeout: float = 12.0):
        self._topics: Dict[str, Set[Subscription]] = {}
        self._listeners: List[Callable[[ProgressEvent], None]] = []
        self._webhook_tasks: Set[asyncio.Task] = set()
        self.webhook_url = webhook_url
        self.webhook_timeout = webhook_timeout

    def subscribe(self, job_id: str) -> Subscription:
        sub = Subscription(self, job_id)
        self._topics.setdefault(job_id, set()).add(sub)
        return sub

    def unsubscribe(self, sub: Subscription):
        subs = self._topics.get(sub.job_id)
        if subs is None:
            return
        subs.discard(sub)
        if not subs:
            del self._topics[sub.job_id]

    def add_listener(self, callback: Callable[[ProgressEvent], None]):
        """Register a callback receiving every event of every job."""
        self._listeners.append(callback)

    def subscriber_count(self, job_id: str) -> int:
        return len(self._topics.get(job_id, ()))

    async def publish(self, event: ProgressEvent):
        for sub in list(self._topics.get(event.job_id, ())):
            sub.deliver(event)

        for listener in self._listeners:
            try:
                listener(event)
            except Exception as e:
                logger.warning(f"Progress listener failed for {event.kind}: {e}")

        if event.kind == JOB_COMPLETE and self.webhook_url:
            task = asyncio.create_task(self._post_webhook(event))
            self._webhook_tasks.add(task)
            task.add_done_callback(self._webhook_tasks.discard)

    async def _post_webhook(self, event: ProgressEvent) -> bool:
        p = event.payload
        line = (
            f"Job {event.job_id}: {p['overall_status']} "
            f"({p['success_count']}/{p['total_count']} boards)"
        )
        try:
            timeout = aiohttp.ClientTimeout(total=self.webhook_timeout)
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(self.webhook_url, json={"text": line, "content": line}) as resp:
                    if 200 <= resp.status < 300:
                        return True
                    text = await resp.text()
                    logger.warning(f"Progress webhook failed ({resp.status}): {text[:200]}")
                    return False
        except Exception as e:
            logger.warning(f"Progress webhook error: {e}")
            return False
