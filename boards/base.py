"""
Base strategy interface for job boards.

A strategy is a hand-written recipe for one board: how to log in, which
selectors hold which job field, how to submit and how to tell whether the
submission went through. All board-specific strategies inherit from this.

Strategies hold no per-attempt state; the executor builds a fresh instance for
every posting attempt and passes the session in.
"""

import asyncio
import logging
from abc import ABC
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Dict, List, Optional, Tuple
from urllib.parse import urldefrag

from core.errors import STATUS_UNCLEAR, AutomationError, ErrorCategory
from core.models import Board, Job, Outcome

logger = logging.getLogger(__name__)

DEFAULT_ERROR_SELECTORS = [".error-message", ".alert-danger", '[role="alert"]']
MFA_SELECTORS = ['input[name="code"]', 'input[name="otp"]', 'input[name="verificationCode"]']
# Used for boards posted through form discovery
GENERIC_SUCCESS_SELECTORS = [".success", "[class*=\"success\"]"]


class LoginFlow(str, Enum):
    """How a board authenticates the poster."""
    NONE = "none"                          # Public posting form
    CREDENTIALS = "credentials"            # Username/password form
    PRE_AUTHENTICATED = "pre_authenticated"  # Session already carries a login


@dataclass
class PostingCredentials:
    """Account used to log in to boards that require one."""
    username: str = ""
    password: str = ""
    email: Optional[str] = None

    @property
    def login_name(self) -> str:
        return self.email or self.username

    def __bool__(self) -> bool:
        return bool(self.login_name and self.password)


# ============== Formatting helpers ==============

def format_salary(min_salary: Optional[int] = None, max_salary: Optional[int] = None) -> str:
    """Salary range as shown on boards, 'Competitive' when none was given."""
    if min_salary and max_salary:
        return f"${min_salary:,} - ${max_salary:,}"
    if min_salary:
        return f"${min_salary:,}+"
    if max_salary:
        return f"Up to ${max_salary:,}"
    return "Competitive"


def format_description(job: Job) -> str:
    """Job description with company, department and contact lines added."""
    description = job.description
    if job.company and job.company.lower() not in description.lower():
        description = f"Company: {job.company}\n\n{description}"
    description += f"\n\nTo apply, please contact: {job.contact_email}"
    if job.department:
        description = f"Department: {job.department}\n\n{description}"
    return description


def days_from_now(days: int) -> str:
    return (datetime.now() + timedelta(days=days)).strftime("%Y-%m-%d")


def url_changed(current_url: str, post_url: str) -> bool:
    """True when the page has left the post form (fragments ignored)."""
    if not current_url or current_url == "about:blank":
        return False
    current, _ = urldefrag(current_url)
    original, _ = urldefrag(post_url or "")
    return current.rstrip("/") != original.rstrip("/")


# ============== Session helpers ==============

async def safe_fill(session, selector: str, value: str, timeout: float = 10.0) -> bool:
    """Fill a field (or pick an option on a <select>); False if it failed."""
    try:
        if await session.is_select(selector):
            await session.select_option(selector, value, timeout=timeout)
        else:
            await session.fill(selector, value, timeout=timeout)
        return True
    except AutomationError as e:
        logger.warning(f"Could not fill {selector}: {e}")
        return False


async def fill_if_present(session, selector: str, value: str) -> bool:
    """Fill an optional field only when the page has it."""
    if not await session.exists(selector):
        return False
    return await safe_fill(session, selector, value)


async def click_if_present(session, selector: str, settle: float = 0.0) -> bool:
    if not await session.exists(selector):
        return False
    await session.click(selector)
    if settle:
        await asyncio.sleep(settle)
    return True


async def first_error_text(session, selectors: List[str]) -> Optional[str]:
    for selector in selectors:
        if await session.exists(selector):
            text = (await session.text_content(selector) or "").strip()
            if text:
                return text
    return None


async def detect_submission_outcome(
    session,
    post_url: str,
    success_selectors: List[str],
    error_selectors: Optional[List[str]] = None,
    timeout: float = 15.0,
    poll_interval: float = 0.5,
) -> Outcome:
    """
    Success-detection heuristic applied after submit.

    Polls until ``timeout``:
    - any error indicator with text -> failure carrying that text
    - a success indicator, or the URL moved away from the post page -> success
    - nothing decisive before the deadline -> failure ("status unclear")

    The URL-change signal is known to be unreliable on some boards, which is
    why strategies may override ``verify``.
    """
    error_selectors = DEFAULT_ERROR_SELECTORS if error_selectors is None else error_selectors
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout

    while True:
        error_text = await first_error_text(session, error_selectors)
        if error_text:
            return Outcome.failure(error_text, ErrorCategory.AUTOMATION)

        for selector in success_selectors:
            if await session.exists(selector):
                current = session.url
                return Outcome.succeeded(current if url_changed(current, post_url) else None)

        if url_changed(session.url, post_url):
            return Outcome.succeeded(session.url)

        if loop.time() >= deadline:
            return Outcome.failure(STATUS_UNCLEAR, ErrorCategory.AUTOMATION)
        await asyncio.sleep(poll_interval)


# ============== Strategy ==============

class BoardStrategy(ABC):
    """
    Hand-written automation recipe for one board.

    Capabilities are independent so that login flows can vary per board
    without touching the executor:
        login     - authenticate (or confirm no login is needed)
        fill_form - type the job into the posting form
        submit    - press the final submit control
        verify    - decide success/failure after submit
    """

    name: str = ""
    login_flow: LoginFlow = LoginFlow.NONE
    login_url: Optional[str] = None
    login_optional: bool = False

    login_selectors: Dict[str, str] = {}
    logged_in_selector: Optional[str] = None
    login_error_selector: str = ".error-message, .alert-danger, .login-error"

    post_job_link: Optional[str] = None
    field_selectors: Dict[str, str] = {}
    required_fields: Tuple[str, ...] = ("title", "description")
    employment_types: Dict[str, str] = {}

    submit_selector: str = 'button[type="submit"]'
    preview_selector: Optional[str] = None
    confirm_selector: Optional[str] = None
    success_selectors: List[str] = []
    error_selectors: List[str] = DEFAULT_ERROR_SELECTORS
    reference_selector: Optional[str] = None

    def __init__(self, element_timeout: float = 10.0, settle_delay: float = 1.0):
        self.element_timeout = element_timeout
        self.settle_delay = settle_delay

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} {self.name}>"

    # ---------- login ----------

    async def login(self, session, credentials: Optional[PostingCredentials], board: Board):
        """Authenticate according to ``login_flow``. Raises AutomationError."""
        if self.login_flow == LoginFlow.NONE:
            return

        await session.navigate(self.login_url or board.base_url)

        if self.logged_in_selector and await session.exists(self.logged_in_selector):
            logger.info(f"[{self.name}] Already logged in")
            return

        if self.login_flow == LoginFlow.PRE_AUTHENTICATED:
            raise AutomationError(f"{self.name}: session is not authenticated")

        await self.open_login_form(session)

        username_selector = self.login_selectors.get("username")
        if not username_selector or not await session.exists(username_selector):
            if self.login_optional:
                logger.info(f"[{self.name}] No login required")
                return
            raise AutomationError(f"{self.name}: login form not found")

        if not credentials:
            raise AutomationError(f"{self.name}: posting credentials are not configured")

        await session.fill(username_selector, credentials.login_name, timeout=self.element_timeout)
        await session.fill(self.login_selectors["password"], credentials.password, timeout=self.element_timeout)
        await session.click(self.login_selectors["submit"], timeout=self.element_timeout)
        await asyncio.sleep(self.settle_delay)

        for selector in MFA_SELECTORS:
            if await session.exists(selector):
                raise AutomationError(f"{self.name}: multi-factor authentication required")

        error_text = await first_error_text(session, [self.login_error_selector])
        if error_text:
            raise AutomationError(f"Login failed: {error_text}")

        logger.info(f"[{self.name}] Logged in as {credentials.login_name}")

    async def open_login_form(self, session):
        """Hook for boards that hide the login form behind a link."""

    # ---------- form ----------

    def selectors_for(self, board: Board) -> Dict[str, str]:
        """Field selectors, with the board's configured overrides applied."""
        selectors = dict(self.field_selectors)
        if board.selectors:
            selectors.update(board.selectors)
        return selectors

    def field_values(self, job: Job) -> Dict[str, str]:
        """Value for every field key the job has data for."""
        values = {
            "title": job.title,
            "description": format_description(job),
            "location": job.location,
            "company": job.company,
            "department": job.department or "",
            "salary_min": str(job.salary_min) if job.salary_min else "",
            "salary_max": str(job.salary_max) if job.salary_max else "",
            "salary": format_salary(job.salary_min, job.salary_max),
            "employment_type": self.map_employment_type(job.employment_type),
            "contact_email": job.contact_email,
        }
        return {key: value for key, value in values.items() if value}

    def map_employment_type(self, employment_type: Optional[str]) -> str:
        if not employment_type:
            return ""
        return self.employment_types.get(employment_type.lower(), employment_type)

    async def fill_form(self, session, job: Job, board: Board):
        """Fill every mapped field. Required fields must succeed."""
        if self.post_job_link:
            await click_if_present(session, self.post_job_link, settle=self.settle_delay)

        values = self.field_values(job)
        filled = 0
        for key, selector in self.selectors_for(board).items():
            value = values.get(key)
            if not value:
                continue
            if await safe_fill(session, selector, value, timeout=self.element_timeout):
                filled += 1
            elif key in self.required_fields:
                raise AutomationError(f"{self.name}: could not fill required field '{key}'")

        await self.after_fill(session, job)
        logger.info(f"[{self.name}] Filled {filled} fields")

    async def after_fill(self, session, job: Job):
        """Hook for board-specific extra fields."""

    # ---------- submit / verify ----------

    async def submit(self, session):
        if self.preview_selector and await click_if_present(session, self.preview_selector, settle=self.settle_delay):
            if self.confirm_selector and await click_if_present(session, self.confirm_selector):
                return

        if not await session.exists(self.submit_selector):
            raise AutomationError(f"{self.name}: submit button not found")
        await session.click(self.submit_selector, timeout=self.element_timeout)

    async def verify(self, session, board: Board, timeout: float = 15.0) -> Outcome:
        outcome = await detect_submission_outcome(
            session,
            board.post_url,
            self.success_selectors,
            self.error_selectors,
            timeout=timeout,
        )
        if outcome.success and not outcome.external_url:
            outcome.external_url = await self.extract_reference(session, board)
        return outcome

    async def extract_reference(self, session, board: Board) -> Optional[str]:
        """External URL (or reference) of the created listing, if the page shows one."""
        if not self.reference_selector:
            return None
        text = await session.text_content(self.reference_selector)
        if not text or not text.strip():
            return None
        return f"{board.base_url.rstrip('/')}/jobs/{text.strip()}"
