"""
Error taxonomy for the posting engine.

Every failure is sorted into one category; the scheduler decides
retry-vs-terminal from the category alone.
"""

import asyncio
from enum import Enum

from playwright.async_api import Error as PlaywrightError


class ErrorCategory(str, Enum):
    TRANSIENT_INFRA = "transient_infra"
    DISCOVERY = "discovery"
    AUTOMATION = "automation"
    FATAL_DRIVER = "fatal_driver"
    CONFIGURATION = "configuration"


# Categories the scheduler retries automatically
RETRYABLE_CATEGORIES = frozenset({ErrorCategory.AUTOMATION})

FORM_NOT_FOUND = "form not found"
STATUS_UNCLEAR = "Submission status unclear - manual verification required"


class PostingError(Exception):
    """Base class for posting engine errors."""
    category = ErrorCategory.AUTOMATION


class RepositoryUnavailableError(PostingError):
    """The job/posting store could not be reached."""
    category = ErrorCategory.TRANSIENT_INFRA


class DiscoveryError(PostingError):
    """Form discovery failed or produced nothing usable."""
    category = ErrorCategory.DISCOVERY


class FormNotFoundError(DiscoveryError):
    def __init__(self, detail: str = ""):
        super().__init__(FORM_NOT_FOUND)
        self.detail = detail


class AutomationError(PostingError):
    """Browser automation failed: selector, navigation, login or submission."""
    category = ErrorCategory.AUTOMATION


class DriverInitializationError(PostingError):
    """The browser engine could not be started at all."""
    category = ErrorCategory.FATAL_DRIVER


class BoardConfigurationError(PostingError):
    """The board is disabled, unknown or missing its post URL."""
    category = ErrorCategory.CONFIGURATION


class ProviderError(Exception):
    """An AI provider request failed (transport, HTTP status, empty body)."""

    def __init__(self, provider: str, message: str):
        super().__init__(f"{provider}: {message}")
        self.provider = provider


class InvalidTransitionError(Exception):
    """A posting status change that the state machine does not allow."""


def categorize_error(error: BaseException) -> ErrorCategory:
    """Map an arbitrary exception onto the error taxonomy."""
    if isinstance(error, PostingError):
        return error.category
    if isinstance(error, (asyncio.TimeoutError, TimeoutError, PlaywrightError)):
        return ErrorCategory.AUTOMATION
    if isinstance(error, ConnectionError):
        return ErrorCategory.TRANSIENT_INFRA
    return ErrorCategory.AUTOMATION


def is_retryable(category) -> bool:
    return category in RETRYABLE_CATEGORIES


def describe_error(error: BaseException) -> str:
    """Human readable error text for the employer-facing posting record."""
    if isinstance(error, (asyncio.TimeoutError, TimeoutError)) and not str(error):
        return "Operation timed out"
    return str(error) or error.__class__.__name__
