"""
Pytest fixtures and configuration for the Job Multi-Poster test suite.

Nothing here touches the network or a real browser: the driver, sessions,
AI discovery and clock are all fakes that record what was asked of them.
"""

import asyncio
import sys
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional

import pytest

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from ai.form_discovery import DiscoveryResult
from core.clock import Clock
from core.errors import AutomationError, DriverInitializationError
from core.models import Board, FieldRole, FormFieldCandidate, Job, Outcome
from core.repository import InMemoryRepository


# === Clock ===

class FakeClock(Clock):
    """Manually advanced clock."""

    def __init__(self, start: float = 1000.0):
        self.current = start

    def now(self) -> float:
        return self.current

    def advance(self, seconds: float):
        self.current += seconds


# === Browser fakes ===

class FakeSession:
    """
    In-memory stand-in for a browser page.

    ``present`` is the set of selectors that exist on the page. ``on_click``
    maps a selector to a callback run when it is clicked, which is how tests
    simulate navigation after submit.
    """

    def __init__(
        self,
        url: str = "about:blank",
        present: Iterable[str] = (),
        texts: Optional[Dict[str, str]] = None,
        attributes: Optional[Dict[str, Dict[str, str]]] = None,
        html: str = "",
        fail_fill: Iterable[str] = (),
        selects: Iterable[str] = (),
        on_click: Optional[Dict[str, Callable[["FakeSession"], None]]] = None,
        screenshot_bytes: bytes = b"\x89PNG fake",
    ):
        self.session_id = "fake-session"
        self._url = url
        self.present = set(present)
        self.texts = dict(texts or {})
        self.attributes = dict(attributes or {})
        self.html = html
        self.fail_fill = set(fail_fill)
        self.selects = set(selects)
        self.on_click = dict(on_click or {})
        self.screenshot_bytes = screenshot_bytes
        self.calls: List[tuple] = []
        self.closed = False

    @property
    def url(self) -> str:
        return self._url

    @url.setter
    def url(self, value: str):
        self._url = value

    def ops(self, name: str) -> List[tuple]:
        return [c for c in self.calls if c[0] == name]

    async def navigate(self, url: str, wait_until: str = "networkidle", timeout: float = 30.0):
        self.calls.append(("navigate", url))
        self._url = url

    async def fill(self, selector: str, value: str, timeout: float = 10.0):
        if selector in self.fail_fill:
            raise AutomationError(f"Timeout waiting for {selector}")
        self.calls.append(("fill", selector, value))

    async def select_option(self, selector: str, value: str, timeout: float = 10.0):
        if selector in self.fail_fill:
            raise AutomationError(f"Timeout waiting for {selector}")
        self.calls.append(("select", selector, value))

    async def click(self, selector: str, timeout: float = 10.0):
        self.calls.append(("click", selector))
        callback = self.on_click.get(selector)
        if callback:
            callback(self)

    async def is_select(self, selector: str) -> bool:
        return selector in self.selects

    async def screenshot(self) -> bytes:
        self.calls.append(("screenshot",))
        return self.screenshot_bytes

    async def content(self) -> str:
        return self.html

    async def wait_for_selector(self, selector: str, timeout: float = 10.0) -> bool:
        return selector in self.present

    async def exists(self, selector: str) -> bool:
        return selector in self.present

    async def text_content(self, selector: str) -> Optional[str]:
        return self.texts.get(selector)

    async def get_attribute(self, selector: str, name: str) -> Optional[str]:
        return self.attributes.get(selector, {}).get(name)

    async def dismiss_cookie_banner(self):
        return None

    async def human_delay(self, min_seconds: float = 0.3, max_seconds: float = 0.8):
        self.calls.append(("delay",))

    async def close(self):
        self.closed = True


class FakeDriver:
    """Hands out FakeSessions from a factory and counts them."""

    def __init__(self, session_factory: Optional[Callable[[], FakeSession]] = None, start_error: Exception = None):
        self.session_factory = session_factory or FakeSession
        self.start_error = start_error
        self.start_calls = 0
        self.sessions: List[FakeSession] = []
        self.closed = False

    async def start(self):
        self.start_calls += 1
        if self.start_error:
            raise self.start_error

    async def open(self) -> FakeSession:
        session = self.session_factory()
        self.sessions.append(session)
        return session

    async def close(self):
        self.closed = True


# === Discovery stub ===

class StubDiscovery:
    """Returns a fixed DiscoveryResult and records what it was asked."""

    def __init__(self, result: DiscoveryResult):
        self.result = result
        self.calls: List[tuple] = []

    async def discover(self, markup: str, url: str, board_name: str) -> DiscoveryResult:
        self.calls.append((markup, url, board_name))
        return self.result

    def get_provider_info(self):
        return {"primary": {"name": "stub", "model": "stub-1"}, "fallback": None}

    async def test_connection(self):
        return {"stub": True}


def discovery_result(confidence: float = 0.9, cost: float = 0.0004, **kwargs) -> DiscoveryResult:
    fields = kwargs.pop("fields", None)
    if fields is None:
        fields = [
            FormFieldCandidate(FieldRole.TITLE, "#title", 0.95),
            FormFieldCandidate(FieldRole.DESCRIPTION, "#desc", 0.9),
            FormFieldCandidate(FieldRole.EMAIL, "#email", 0.4),
            FormFieldCandidate(FieldRole.SUBMIT, "#go", 0.9),
        ]
    return DiscoveryResult(
        success=kwargs.pop("success", True),
        fields=fields,
        confidence=confidence,
        cost=cost,
        provider="stub",
        **kwargs,
    )


# === Scheduler executor stub ===

class ScriptedExecutor:
    """
    Executor double for scheduler tests.

    ``script`` maps a board id to the outcomes of successive attempts; the
    last outcome repeats. ``delay`` keeps each call in flight for a while so
    concurrency can be observed.
    """

    def __init__(self, script: Optional[Dict[str, List[Outcome]]] = None, delay: float = 0.0):
        self.script = {k: list(v) for k, v in (script or {}).items()}
        self.delay = delay
        self.calls: List[str] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def execute(self, job: Job, posting) -> Outcome:
        self.calls.append(posting.board_id)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            outcomes = self.script.get(posting.board_id) or [Outcome.succeeded(f"https://boards.test/{posting.board_id}")]
            outcome = outcomes.pop(0) if len(outcomes) > 1 else outcomes[0]
            if isinstance(outcome, Exception):
                raise outcome
            return outcome
        finally:
            self.in_flight -= 1

    def attempts(self, board_id: str) -> int:
        return self.calls.count(board_id)


# === Data fixtures ===

def make_job(job_id: str = "job-1", **overrides) -> Job:
    fields = dict(
        id=job_id,
        title="Research Software Engineer",
        description="Build data pipelines for the genomics lab.",
        location="Boston, MA",
        company="Acme Labs",
        contact_email="hiring@acme.test",
        salary_min=90000,
        salary_max=120000,
        employment_type="full-time",
    )
    fields.update(overrides)
    return Job(**fields)


def make_board(board_id: str, name: str, **overrides) -> Board:
    fields = dict(
        id=board_id,
        name=name,
        base_url=f"https://{board_id}.test",
        post_url=f"https://{board_id}.test/post",
    )
    fields.update(overrides)
    return Board(**fields)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sample_job():
    return make_job()


@pytest.fixture
def strategy_board():
    """Board with a hand-written strategy (Harvard)."""
    return make_board("harvard", "Harvard University", code="harvard")


@pytest.fixture
def discovery_board():
    """Board without a strategy; posted through form discovery."""
    return make_board("acme-careers", "Acme Careers")


@pytest.fixture
def repository(strategy_board, discovery_board):
    return InMemoryRepository([strategy_board, discovery_board])


@pytest.fixture
def failing_driver():
    return FakeDriver(start_error=DriverInitializationError("chromium failed to launch"))
