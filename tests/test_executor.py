"""
Tests for the posting executor: strategy path, discovery path and the
guarantee that every failure comes back as an Outcome.
"""

import pytest

from boards import StrategyRegistry
from boards.harvard import GATEWAY_URL
from core.errors import STATUS_UNCLEAR, ErrorCategory
from core.executor import ExecutorConfig, PostingExecutor
from core.models import Posting
from tests.conftest import FakeDriver, FakeSession, StubDiscovery, discovery_result, make_board


def posting_for(board, posting_id="posting-1"):
    return Posting(id=posting_id, job_id="job-1", board_id=board.id, board=board)


def build(session=None, discovery=None, **config):
    config.setdefault("submission_timeout", 0.2)
    driver = FakeDriver(lambda: session or FakeSession())
    executor = PostingExecutor(
        driver,
        StrategyRegistry(settle_delay=0),
        discovery,
        config=ExecutorConfig(**config),
    )
    return executor, driver


def redirect_to(url):
    def _navigate(session):
        session.url = url
    return _navigate


def show(selector, text=None):
    def _show(session):
        session.present.add(selector)
        if text is not None:
            session.texts[selector] = text
    return _show


@pytest.mark.asyncio
class TestStrategyPath:
    async def test_harvard_success_with_reference(self, sample_job, strategy_board):
        session = FakeSession(
            present={"#submitJobButton"},
            on_click={"#submitJobButton": show(".job-reference-number", " HRV-2041 ")},
        )
        executor, driver = build(session)

        outcome = await executor.execute(sample_job, posting_for(strategy_board))

        assert outcome.success
        assert outcome.external_url == f"{GATEWAY_URL}#jobDetails=HRV-2041"
        assert outcome.screenshot == session.screenshot_bytes
        assert outcome.used_discovery is False
        assert session.closed
        filled = {c[1]: c[2] for c in session.ops("fill")}
        assert filled["#jobTitle"] == sample_job.title
        assert filled["#jobLocation"] == "Boston, MA"
        assert filled["#salaryRangeMin"] == "90000"
        assert "hiring@acme.test" in filled["#jobDescription"]
        assert ("navigate", strategy_board.post_url) in session.calls

    async def test_required_field_failure(self, sample_job, strategy_board):
        session = FakeSession(present={"#submitJobButton"}, fail_fill={"#jobTitle"})
        executor, _ = build(session)

        outcome = await executor.execute(sample_job, posting_for(strategy_board))

        assert not outcome.success
        assert outcome.error_category == ErrorCategory.AUTOMATION
        assert "required field 'title'" in outcome.error_message
        assert outcome.screenshot is not None
        assert session.ops("click") == []
        assert session.closed

    async def test_error_indicator_after_submit(self, sample_job, strategy_board):
        session = FakeSession(
            present={"#submitJobButton"},
            on_click={"#submitJobButton": show(".alert-danger", "Salary range is required")},
        )
        executor, _ = build(session)

        outcome = await executor.execute(sample_job, posting_for(strategy_board))

        assert not outcome.success
        assert outcome.error_message == "Salary range is required"

    async def test_no_signal_is_status_unclear(self, sample_job, strategy_board):
        session = FakeSession(present={"#submitJobButton"})
        executor, _ = build(session, submission_timeout=0.01)

        outcome = await executor.execute(sample_job, posting_for(strategy_board))

        assert not outcome.success
        assert outcome.error_message == STATUS_UNCLEAR
        assert outcome.error_category == ErrorCategory.AUTOMATION

    async def test_missing_submit_button(self, sample_job, strategy_board):
        session = FakeSession()
        executor, _ = build(session)

        outcome = await executor.execute(sample_job, posting_for(strategy_board))

        assert not outcome.success
        assert "submit button not found" in outcome.error_message


@pytest.mark.asyncio
class TestDiscoveryPath:
    async def test_discovered_form_is_filled_and_submitted(self, sample_job, discovery_board):
        session = FakeSession(
            html="<html><body><form><input id='title'></form></body></html>",
            on_click={"#go": redirect_to("https://acme-careers.test/thanks")},
        )
        discovery = StubDiscovery(discovery_result(confidence=0.92, cost=0.0004))
        executor, _ = build(session, discovery)

        outcome = await executor.execute(sample_job, posting_for(discovery_board))

        assert outcome.success
        assert outcome.external_url == "https://acme-careers.test/thanks"
        assert outcome.used_discovery
        assert outcome.cost == pytest.approx(0.0004)
        assert discovery.calls[0][2] == "Acme Careers"

        filled = [c[1] for c in session.ops("fill")]
        # #email is below the per-field floor
        assert filled == ["#title", "#desc"]
        assert session.ops("click") == [("click", "#go")]
        assert len(session.ops("delay")) >= 1

    async def test_low_confidence_is_form_not_found(self, sample_job, discovery_board):
        session = FakeSession(html="<form></form>")
        discovery = StubDiscovery(discovery_result(confidence=0.4))
        executor, _ = build(session, discovery)

        outcome = await executor.execute(sample_job, posting_for(discovery_board))

        assert outcome.success is False
        assert outcome.error_message == "form not found"
        assert outcome.error_category == ErrorCategory.DISCOVERY
        assert session.ops("fill") == []
        assert session.ops("click") == []
        assert outcome.screenshot is not None

    async def test_low_confidence_guard_holds_on_rerun(self, sample_job, discovery_board):
        discovery = StubDiscovery(discovery_result(confidence=0.69))
        sessions = []

        def factory():
            sessions.append(FakeSession(html="<form></form>"))
            return sessions[-1]

        executor = PostingExecutor(FakeDriver(factory), StrategyRegistry(), discovery)
        for _ in range(2):
            outcome = await executor.execute(sample_job, posting_for(discovery_board))
            assert outcome.error_message == "form not found"
        assert all(not s.ops("fill") and not s.ops("click") for s in sessions)

    async def test_no_submit_control(self, sample_job, discovery_board):
        result = discovery_result(fields=[])
        discovery = StubDiscovery(result)
        executor, _ = build(FakeSession(html="<form></form>"), discovery)

        outcome = await executor.execute(sample_job, posting_for(discovery_board))
        assert outcome.error_message == "form not found"

    async def test_unsuccessful_discovery(self, sample_job, discovery_board):
        discovery = StubDiscovery(discovery_result(success=False, errors=["groq: HTTP 503"]))
        executor, _ = build(FakeSession(html="<form></form>"), discovery)

        outcome = await executor.execute(sample_job, posting_for(discovery_board))

        assert outcome.error_category == ErrorCategory.DISCOVERY
        assert outcome.error_message == "Form discovery failed: groq: HTTP 503"

    async def test_cost_ceiling_proceeds_by_default(self, sample_job, discovery_board):
        session = FakeSession(html="<form></form>", on_click={"#go": show(".success")})
        discovery = StubDiscovery(discovery_result(cost=0.02, cost_exceeded=True))
        executor, _ = build(session, discovery)

        outcome = await executor.execute(sample_job, posting_for(discovery_board))

        assert outcome.success
        assert outcome.cost_ceiling_exceeded

    async def test_cost_ceiling_abort_policy(self, sample_job, discovery_board):
        session = FakeSession(html="<form></form>")
        discovery = StubDiscovery(discovery_result(cost=0.02, cost_exceeded=True))
        executor, _ = build(session, discovery, abort_on_cost_ceiling=True)

        outcome = await executor.execute(sample_job, posting_for(discovery_board))

        assert not outcome.success
        assert outcome.error_category == ErrorCategory.DISCOVERY
        assert outcome.cost == pytest.approx(0.02)
        assert session.ops("fill") == []

    async def test_without_discovery_service(self, sample_job, discovery_board):
        executor, _ = build(FakeSession())
        outcome = await executor.execute(sample_job, posting_for(discovery_board))
        assert outcome.error_category == ErrorCategory.CONFIGURATION


@pytest.mark.asyncio
class TestBoardChecks:
    async def test_disabled_board_never_opens_a_session(self, sample_job):
        board = make_board("closed", "Closed Board", enabled=False)
        executor, driver = build()

        outcome = await executor.execute(sample_job, posting_for(board))

        assert outcome.error_category == ErrorCategory.CONFIGURATION
        assert "disabled" in outcome.error_message
        assert driver.sessions == []

    async def test_unknown_board(self, sample_job):
        executor, _ = build()
        outcome = await executor.execute(sample_job, Posting(id="p", job_id="job-1", board_id="ghost"))
        assert outcome.error_message == "Board ghost not found"

    async def test_driver_open_failure_is_an_outcome(self, sample_job, strategy_board):
        class BrokenDriver(FakeDriver):
            async def open(self):
                raise ConnectionError("CDP endpoint refused connection")

        executor = PostingExecutor(BrokenDriver(), StrategyRegistry())
        outcome = await executor.execute(sample_job, posting_for(strategy_board))

        assert not outcome.success
        assert outcome.screenshot is None
        assert "CDP endpoint" in outcome.error_message
