#!/usr/bin/env python3
"""
Browser Driver

Opens and controls headless browser sessions for posting attempts.

The engine (Playwright + Chromium, or a BrowserBase cloud browser) is started
once and shared. Every posting attempt gets its own context and page through
open(), and must close it when done. Pages are never shared between
concurrent attempts.

Example:
    driver = PlaywrightBrowserDriver(headless=True)
    await driver.start()

    session = await driver.open()
    try:
        await session.navigate("https://example.com/post-job")
        await session.fill("#title", "Research Engineer")
        png = await session.screenshot()
    finally:
        await session.close()

    await driver.close()
"""

import asyncio
import logging
import random
import uuid
from typing import List, Optional

from browserbase import Browserbase
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError
from playwright.async_api import async_playwright

from core.errors import AutomationError, DriverInitializationError

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36"
)

LAUNCH_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-accelerated-2d-canvas",
    "--no-first-run",
    "--no-zygote",
    "--disable-gpu",
]

COOKIE_CONSENT_SELECTORS = [
    'button:has-text("Accept")',
    'button:has-text("Accept all")',
    'button:has-text("Accept cookies")',
    'button:has-text("I agree")',
    ".cookie-consent button",
    "#cookie-accept",
    '[data-action="accept"]',
]


class BrowserSession:
    """Primitives a posting attempt may use on its exclusive page."""

    session_id: str

    @property
    def url(self) -> str:
        raise NotImplementedError

    async def navigate(self, url: str, wait_until: str = "networkidle", timeout: float = 30.0):
        raise NotImplementedError

    async def fill(self, selector: str, value: str, timeout: float = 10.0):
        raise NotImplementedError

    async def click(self, selector: str, timeout: float = 10.0):
        raise NotImplementedError

    async def select_option(self, selector: str, value: str, timeout: float = 10.0):
        raise NotImplementedError

    async def is_select(self, selector: str) -> bool:
        raise NotImplementedError

    async def screenshot(self) -> bytes:
        raise NotImplementedError

    async def content(self) -> str:
        raise NotImplementedError

    async def wait_for_selector(self, selector: str, timeout: float = 10.0) -> bool:
        raise NotImplementedError

    async def exists(self, selector: str) -> bool:
        raise NotImplementedError

    async def text_content(self, selector: str) -> Optional[str]:
        raise NotImplementedError

    async def get_attribute(self, selector: str, name: str) -> Optional[str]:
        raise NotImplementedError

    async def dismiss_cookie_banner(self):
        raise NotImplementedError

    async def human_delay(self, min_seconds: float = 0.3, max_seconds: float = 0.8):
        await asyncio.sleep(random.uniform(min_seconds, max_seconds))

    async def close(self):
        raise NotImplementedError


class BrowserDriver:
    """Starts the shared engine and hands out exclusive sessions."""

    async def start(self):
        raise NotImplementedError

    async def open(self) -> BrowserSession:
        raise NotImplementedError

    async def close(self):
        raise NotImplementedError


class PlaywrightSession(BrowserSession):
    """A Playwright page plus the context that owns it."""

    def __init__(self, session_id: str, page, context, remote_browser=None):
        self.session_id = session_id
        self.page = page
        self.context = context
        self._remote_browser = remote_browser
        self._closed = False

    @property
    def url(self) -> str:
        return self.page.url

    async def navigate(self, url: str, wait_until: str = "networkidle", timeout: float = 30.0):
        try:
            await self.page.goto(url, wait_until=wait_until, timeout=timeout * 1000)
        except PlaywrightTimeoutError:
            if wait_until == "domcontentloaded":
                raise AutomationError(f"Navigation to {url} timed out after {timeout:.0f}s")
            # Pages with long-polling never reach networkidle; settle for the DOM.
            logger.debug(f"[{self.session_id}] networkidle timeout on {url}, waiting for DOM")
            try:
                await self.page.wait_for_load_state("domcontentloaded", timeout=timeout * 1000)
            except PlaywrightTimeoutError:
                raise AutomationError(f"Navigation to {url} timed out after {timeout:.0f}s")

    async def fill(self, selector: str, value: str, timeout: float = 10.0):
        try:
            await self.page.wait_for_selector(selector, state="visible", timeout=timeout * 1000)
            await self.page.fill(selector, value)
        except PlaywrightError as e:
            raise AutomationError(f"Failed to fill {selector}: {e}")

    async def click(self, selector: str, timeout: float = 10.0):
        try:
            await self.page.wait_for_selector(selector, state="visible", timeout=timeout * 1000)
            await self.page.click(selector)
        except PlaywrightError as e:
            raise AutomationError(f"Failed to click {selector}: {e}")

    async def select_option(self, selector: str, value: str, timeout: float = 10.0):
        try:
            await self.page.wait_for_selector(selector, state="visible", timeout=timeout * 1000)
            await self.page.select_option(selector, value)
        except PlaywrightError as e:
            raise AutomationError(f"Failed to select {value} in {selector}: {e}")

    async def is_select(self, selector: str) -> bool:
        try:
            tag = await self.page.eval_on_selector(selector, "el => el.tagName")
        except PlaywrightError:
            return False
        return str(tag).upper() == "SELECT"

    async def screenshot(self) -> bytes:
        return await self.page.screenshot(full_page=True, type="png")

    async def content(self) -> str:
        return await self.page.content()

    async def wait_for_selector(self, selector: str, timeout: float = 10.0) -> bool:
        try:
            await self.page.wait_for_selector(selector, state="visible", timeout=timeout * 1000)
            return True
        except PlaywrightError:
            return False

    async def exists(self, selector: str) -> bool:
        try:
            return await self.page.query_selector(selector) is not None
        except PlaywrightError:
            return False

    async def text_content(self, selector: str) -> Optional[str]:
        try:
            element = await self.page.query_selector(selector)
            if element is None:
                return None
            return await element.text_content()
        except PlaywrightError:
            return None

    async def get_attribute(self, selector: str, name: str) -> Optional[str]:
        try:
            element = await self.page.query_selector(selector)
            if element is None:
                return None
            return await element.get_attribute(name)
        except PlaywrightError:
            return None

    async def dismiss_cookie_banner(self):
        for selector in COOKIE_CONSENT_SELECTORS:
            try:
                button = await self.page.query_selector(selector)
                if button:
                    await button.click()
                    await self.page.wait_for_timeout(1000)
                    return
            except PlaywrightError:
                continue

    async def close(self):
        if self._closed:
            return
        self._closed = True
        try:
            await self.context.close()
            if self._remote_browser is not None:
                await self._remote_browser.close()
            logger.debug(f"Closed browser session: {self.session_id}")
        except PlaywrightError as e:
            logger.warning(f"Error closing session {self.session_id}: {e}")


class PlaywrightBrowserDriver(BrowserDriver):
    """
    Playwright-backed driver.

    Supports two environments:
    1. LOCAL: launches headless Chromium once and opens a new context per session
    2. BROWSERBASE: creates a BrowserBase cloud session per posting attempt and
       connects to it over CDP
    """

    def __init__(
        self,
        headless: bool = True,
        env: str = "LOCAL",
        browserbase_api_key: Optional[str] = None,
        browserbase_project_id: Optional[str] = None,
        user_agent: str = DEFAULT_USER_AGENT,
        viewport: tuple = (1280, 720),
        default_timeout: float = 60.0,
        launch_attempts: int = 3,
        launch_retry_delay: float = 2.0,
        blocked_resource_types: Optional[List[str]] = None,
    ):
        self.headless = headless
        self.env = env.upper()
        self.browserbase_api_key = browserbase_api_key
        self.browserbase_project_id = browserbase_project_id
        self.user_agent = user_agent
        self.viewport = viewport
        self.default_timeout = default_timeout
        self.launch_attempts = launch_attempts
        self.launch_retry_delay = launch_retry_delay
        self.blocked_resource_types = blocked_resource_types or ["media"]

        self._playwright = None
        self._browser = None
        self._bb: Optional[Browserbase] = None
        self._start_lock = asyncio.Lock()
        self._open_sessions = 0

    @property
    def started(self) -> bool:
        if self.env == "BROWSERBASE":
            return self._bb is not None and self._playwright is not None
        return self._browser is not None

    async def start(self):
        """Start the shared engine. Raises DriverInitializationError."""
        async with self._start_lock:
            if self.started:
                return

            last_error = None
            for attempt in range(1, self.launch_attempts + 1):
                try:
                    if self._playwright is None:
                        self._playwright = await async_playwright().start()
                    if self.env == "BROWSERBASE":
                        if not (self.browserbase_api_key and self.browserbase_project_id):
                            raise DriverInitializationError(
                                "BROWSERBASE_API_KEY and BROWSERBASE_PROJECT_ID are required"
                            )
                        self._bb = Browserbase(api_key=self.browserbase_api_key)
                    else:
                        self._browser = await self._playwright.chromium.launch(
                            headless=self.headless,
                            args=LAUNCH_ARGS,
                        )
                    logger.info(f"Browser driver started ({self.env} mode)")
                    return
                except DriverInitializationError:
                    raise
                except Exception as e:
                    last_error = e
                    logger.error(f"Browser initialization failed ({attempt}/{self.launch_attempts}): {e}")
                    if attempt < self.launch_attempts:
                        await asyncio.sleep(self.launch_retry_delay)

            raise DriverInitializationError(
                f"Failed to initialize browser after {self.launch_attempts} attempts: {last_error}"
            )

    async def open(self) -> PlaywrightSession:
        """Open an exclusive session (context + page) for one posting attempt."""
        await self.start()

        remote_browser = None
        try:
            if self.env == "BROWSERBASE":
                bb_session = await asyncio.to_thread(
                    self._bb.sessions.create, project_id=self.browserbase_project_id
                )
                session_id = bb_session.id
                remote_browser = await self._playwright.chromium.connect_over_cdp(bb_session.connect_url)
                context = remote_browser.contexts[0] if remote_browser.contexts else await remote_browser.new_context()
            else:
                session_id = f"session_{uuid.uuid4().hex[:10]}"
                context = await self._browser.new_context(
                    viewport={"width": self.viewport[0], "height": self.viewport[1]},
                    user_agent=self.user_agent,
                    ignore_https_errors=True,
                )
            page = await context.new_page()
        except Exception as e:
            if remote_browser is not None:
                await remote_browser.close()
            raise DriverInitializationError(f"Could not open browser session: {e}")

        page.set_default_timeout(self.default_timeout * 1000)
        page.set_default_navigation_timeout(self.default_timeout * 1000)
        await page.route("**/*", self._route_filter)

        self._open_sessions += 1
        logger.info(f"Created browser session: {session_id}")
        return _CountingSession(self, session_id, page, context, remote_browser)

    async def _route_filter(self, route):
        if route.request.resource_type in self.blocked_resource_types:
            await route.abort()
        else:
            await route.continue_()

    def _session_closed(self):
        self._open_sessions = max(0, self._open_sessions - 1)

    def get_stats(self) -> dict:
        return {
            "env": self.env,
            "started": self.started,
            "open_sessions": self._open_sessions,
            "headless": self.headless,
        }

    async def close(self):
        if self._browser is not None:
            await self._browser.close()
            self._browser = None
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None
        self._bb = None
        logger.info("Browser driver closed")

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()


class _CountingSession(PlaywrightSession):
    """Session that reports its closing back to the driver."""

    def __init__(self, driver: PlaywrightBrowserDriver, *args):
        super().__init__(*args)
        self._driver = driver

    async def close(self):
        was_closed = self._closed
        await super().close()
        if not was_closed:
            self._driver._session_closed()
