#!/usr/bin/env python3
"""
Posting Executor

Runs one posting attempt: one job onto one board.

    login -> navigate -> fill -> submit -> verify

A hand-written board strategy is used when the registry has one; otherwise
the form is found with AI form discovery. Every step has its own timeout and
every failure comes back as a failed Outcome. Nothing raised inside an attempt
escapes execute().
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Optional

from boards.base import (
    GENERIC_SUCCESS_SELECTORS,
    BoardStrategy,
    PostingCredentials,
    detect_submission_outcome,
    safe_fill,
)
from .errors import (
    AutomationError,
    BoardConfigurationError,
    DiscoveryError,
    ErrorCategory,
    FormNotFoundError,
    categorize_error,
    describe_error,
)
from .models import Board, Job, Outcome, Posting

logger = logging.getLogger(__name__)


@dataclass
class ExecutorConfig:
    """Timeouts (seconds) and discovery gates for posting attempts."""
    open_timeout: float = 30.0
    navigation_timeout: float = 30.0
    element_timeout: float = 10.0
    submission_timeout: float = 15.0
    step_timeout: float = 90.0
    discovery_timeout: float = 60.0
    screenshot_timeout: float = 10.0
    close_timeout: float = 10.0

    min_confidence: float = 0.7
    field_min_confidence: float = 0.5

    min_field_delay: float = 0.3
    max_field_delay: float = 0.8

    abort_on_cost_ceiling: bool = False


@dataclass
class _AttemptState:
    """Discovery accounting that must survive a failure later in the attempt."""
    cost: float = 0.0
    used_discovery: bool = False
    cost_exceeded: bool = False


class PostingExecutor:
    """
    Drives the browser for a single posting.

    Example:
        executor = PostingExecutor(driver, StrategyRegistry(), discovery)
        outcome = await executor.execute(job, posting)
    """

    def __init__(
        self,
        driver,
        registry,
        discovery=None,
        config: Optional[ExecutorConfig] = None,
        credentials: Optional[PostingCredentials] = None,
    ):
        self.driver = driver
        self.registry = registry
        self.discovery = discovery
        self.config = config or ExecutorConfig()
        self.credentials = credentials

    async def execute(self, job: Job, posting: Posting) -> Outcome:
        start = time.monotonic()
        board = posting.board

        try:
            self._check_board(posting, board)
        except BoardConfigurationError as e:
            logger.warning(f"Posting {posting.id}: {e}")
            return Outcome.failure(str(e), ErrorCategory.CONFIGURATION)

        state = _AttemptState()
        session = None
        try:
            session = await asyncio.wait_for(self.driver.open(), timeout=self.config.open_timeout)
            strategy = self.registry.resolve_board(board)
            if strategy is not None:
                outcome = await self._run_strategy(strategy, session, job, board)
            else:
                outcome = await self._run_discovery(session, job, board, state)
        except Exception as e:
            category = categorize_error(e)
            message = describe_error(e)
            logger.error(f"Posting {posting.id} to {board.name} failed ({category.value}): {message}")
            outcome = Outcome.failure(message, category)
        finally:
            screenshot = None
            if session is not None:
                screenshot = await self._capture(session, posting)
                await self._close(session, posting)

        outcome.screenshot = screenshot
        outcome.cost = state.cost
        outcome.used_discovery = state.used_discovery
        outcome.cost_ceiling_exceeded = state.cost_exceeded
        outcome.duration_ms = (time.monotonic() - start) * 1000

        if outcome.success:
            logger.info(f"Posted job {job.id} to {board.name}: {outcome.external_url or 'no external URL'}")
        else:
            logger.info(f"Posting {posting.id} to {board.name} failed: {outcome.error_message}")
        return outcome

    def _check_board(self, posting: Posting, board: Optional[Board]):
        if board is None:
            raise BoardConfigurationError(f"Board {posting.board_id} not found")
        if not board.enabled:
            raise BoardConfigurationError(f"Board {board.name} is disabled")
        if not board.post_url:
            raise BoardConfigurationError(f"Board {board.name} has no post URL")

    # ---------- strategy path ----------

    async def _run_strategy(self, strategy: BoardStrategy, session, job: Job, board: Board) -> Outcome:
        cfg = self.config
        logger.info(f"Posting to {board.name} with {strategy.__class__.__name__}")

        await asyncio.wait_for(strategy.login(session, self.credentials, board), timeout=cfg.step_timeout)
        await self._navigate(session, board.post_url)
        await asyncio.wait_for(strategy.fill_form(session, job, board), timeout=cfg.step_timeout)
        await asyncio.wait_for(strategy.submit(session), timeout=cfg.step_timeout)
        return await asyncio.wait_for(
            strategy.verify(session, board, timeout=cfg.submission_timeout),
            timeout=cfg.submission_timeout + cfg.element_timeout,
        )

    # ---------- discovery path ----------

    async def _run_discovery(self, session, job: Job, board: Board, state: _AttemptState) -> Outcome:
        cfg = self.config
        if self.discovery is None:
            raise BoardConfigurationError(f"No posting strategy for {board.name} and form discovery is not configured")

        await self._navigate(session, board.post_url)
        markup = await asyncio.wait_for(session.content(), timeout=cfg.element_timeout)

        result = await asyncio.wait_for(
            self.discovery.discover(markup, session.url or board.post_url, board.name),
            timeout=cfg.discovery_timeout,
        )
        state.used_discovery = True
        state.cost = result.cost
        state.cost_exceeded = result.cost_exceeded

        if result.cost_exceeded:
            if cfg.abort_on_cost_ceiling:
                raise DiscoveryError(f"Form discovery cost ${result.cost:.4f} exceeded the cost ceiling")
            logger.warning(f"Proceeding with {board.name} despite discovery cost ${result.cost:.4f}")

        if not result.success:
            detail = "; ".join(result.errors) or "unusable AI response"
            raise DiscoveryError(f"Form discovery failed: {detail}")

        if result.confidence < cfg.min_confidence:
            raise FormNotFoundError(f"confidence {result.confidence:.2f} below {cfg.min_confidence}")

        usable = result.usable_fields(cfg.field_min_confidence)
        submit = result.submit_field(cfg.field_min_confidence)
        if not usable:
            raise FormNotFoundError("no field above the confidence floor")
        if submit is None:
            raise FormNotFoundError("no submit control found")

        for skipped in result.fields:
            if skipped.confidence < cfg.field_min_confidence:
                logger.debug(f"Skipping {skipped.role.value} field {skipped.selector} (confidence {skipped.confidence:.2f})")

        filled = await self._fill_discovered(session, job, usable)
        if filled == 0:
            raise AutomationError("None of the discovered fields could be filled")

        await session.human_delay(cfg.min_field_delay, cfg.max_field_delay)
        await session.click(submit.selector, timeout=cfg.element_timeout)

        return await asyncio.wait_for(
            detect_submission_outcome(
                session,
                board.post_url,
                GENERIC_SUCCESS_SELECTORS,
                timeout=cfg.submission_timeout,
            ),
            timeout=cfg.submission_timeout + cfg.element_timeout,
        )

    async def _fill_discovered(self, session, job: Job, fields) -> int:
        cfg = self.config
        filled = 0
        for candidate in fields:
            value = job.value_for(candidate.role)
            if not value:
                continue
            if filled:
                await session.human_delay(cfg.min_field_delay, cfg.max_field_delay)
            if await safe_fill(session, candidate.selector, value, timeout=cfg.element_timeout):
                filled += 1
        logger.info(f"Filled {filled}/{len(fields)} discovered fields")
        return filled

    # ---------- session helpers ----------

    async def _navigate(self, session, url: str):
        cfg = self.config
        await asyncio.wait_for(
            session.navigate(url, timeout=cfg.navigation_timeout),
            timeout=cfg.navigation_timeout * 2 + cfg.element_timeout,
        )
        await session.dismiss_cookie_banner()

    async def _capture(self, session, posting: Posting) -> Optional[bytes]:
        try:
            return await asyncio.wait_for(session.screenshot(), timeout=self.config.screenshot_timeout)
        except Exception as e:
            logger.warning(f"Screenshot failed for posting {posting.id}: {e}")
            return None

    async def _close(self, session, posting: Posting):
        try:
            await asyncio.wait_for(session.close(), timeout=self.config.close_timeout)
        except Exception as e:
            logger.warning(f"Could not close browser session for posting {posting.id}: {e}")
