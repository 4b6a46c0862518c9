"""
Tests for the in-process progress channel and the job-complete webhook.
"""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from core.notifier import (
    JOB_COMPLETE,
    POSTING_UPDATE,
    ProgressNotifier,
    job_complete_event,
    job_start_event,
    posting_update_event,
)


class TestEventShapes:
    def test_job_start(self):
        assert job_start_event("j1", 3).to_dict() == {
            "event": "job-start", "job_id": "j1", "total_boards": 3, "status": "posting",
        }

    def test_posting_update_omits_empty_fields(self):
        data = posting_update_event("j1", "b1", "posting").to_dict()
        assert data == {"event": "posting-update", "job_id": "j1", "board_id": "b1", "status": "posting"}

        data = posting_update_event("j1", "b1", "failed", error_message="form not found", board_name="MIT").to_dict()
        assert data["error_message"] == "form not found"
        assert data["board_name"] == "MIT"

    def test_job_complete(self):
        data = job_complete_event("j1", "partial", 1, 2, total_cost=0.0012345678).to_dict()
        assert data["overall_status"] == "partial"
        assert data["success_count"] == 1
        assert data["total_count"] == 2
        assert data["total_cost"] == 0.001235


@pytest.mark.asyncio
class TestProgressNotifier:
    async def test_delivers_only_to_job_topic(self):
        notifier = ProgressNotifier()
        mine = notifier.subscribe("j1")
        other = notifier.subscribe("j2")

        await notifier.publish(posting_update_event("j1", "b1", "success"))

        event = await mine.get(timeout=1)
        assert event.kind == POSTING_UPDATE
        assert other.pending() == []

    async def test_events_keep_publish_order(self):
        notifier = ProgressNotifier()
        sub = notifier.subscribe("j1")
        for status in ("posting", "success"):
            await notifier.publish(posting_update_event("j1", "b1", status))
        assert [e.payload["status"] for e in sub.pending()] == ["posting", "success"]

    async def test_no_replay_for_late_subscribers(self):
        notifier = ProgressNotifier()
        await notifier.publish(job_start_event("j1", 2))
        sub = notifier.subscribe("j1")
        with pytest.raises(asyncio.TimeoutError):
            await sub.get(timeout=0.01)

    async def test_unsubscribe(self):
        notifier = ProgressNotifier()
        sub = notifier.subscribe("j1")
        assert notifier.subscriber_count("j1") == 1
        sub.close()
        assert notifier.subscriber_count("j1") == 0
        await notifier.publish(job_start_event("j1", 1))
        assert sub.pending() == []

    async def test_listener_failure_does_not_break_publish(self):
        notifier = ProgressNotifier()
        seen = []

        def broken(event):
            raise RuntimeError("listener bug")

        notifier.add_listener(broken)
        notifier.add_listener(seen.append)
        sub = notifier.subscribe("j1")

        await notifier.publish(job_start_event("j1", 1))

        assert len(seen) == 1
        assert len(sub.pending()) == 1

    async def test_webhook_only_on_job_complete(self):
        notifier = ProgressNotifier(webhook_url="https://hooks.test/abc")
        with patch.object(notifier, "_post_webhook", new=AsyncMock(return_value=True)) as post:
            await notifier.publish(posting_update_event("j1", "b1", "success"))
            await notifier.publish(job_complete_event("j1", "completed", 2, 2))
            await asyncio.sleep(0)

        post.assert_awaited_once()
        assert post.await_args.args[0].kind == JOB_COMPLETE

    async def test_no_webhook_without_url(self):
        notifier = ProgressNotifier()
        with patch.object(notifier, "_post_webhook", new=AsyncMock()) as post:
            await notifier.publish(job_complete_event("j1", "failed", 0, 1))
            await asyncio.sleep(0)
        post.assert_not_awaited()
