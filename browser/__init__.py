"""
Browser Automation Module

Headless browser sessions for posting attempts. Runs Chromium locally through
Playwright, or in the cloud through BrowserBase.

Environment Variables Used:
    BROWSER_ENV - LOCAL (default) or BROWSERBASE
    BROWSERBASE_API_KEY - Your BrowserBase API key
    BROWSERBASE_PROJECT_ID - Your BrowserBase project ID
"""

from .driver import (
    BrowserDriver,
    BrowserSession,
    PlaywrightBrowserDriver,
    PlaywrightSession,
    COOKIE_CONSENT_SELECTORS,
    DEFAULT_USER_AGENT,
)

__all__ = [
    "BrowserDriver",
    "BrowserSession",
    "PlaywrightBrowserDriver",
    "PlaywrightSession",
    "COOKIE_CONSENT_SELECTORS",
    "DEFAULT_USER_AGENT",
]
