"""
Job Board Strategies

Hand-written posting strategies for the boards we know, and the registry the
executor asks for one. A board without a strategy is posted to through AI
form discovery instead.

Supported: Harvard, MIT, Stanford, Yale, Princeton (Handshake).
"""

import logging
import re
from typing import Dict, List, Optional, Type

from core.models import Board

from .base import (
    BoardStrategy,
    LoginFlow,
    PostingCredentials,
    detect_submission_outcome,
    format_description,
    format_salary,
    url_changed,
)
from .harvard import GATEWAY_URL as HARVARD_GATEWAY_URL
from .harvard import HarvardStrategy
from .mit import MITStrategy
from .princeton import PrincetonStrategy
from .stanford import StanfordStrategy
from .yale import YaleStrategy

logger = logging.getLogger(__name__)


STRATEGIES: Dict[str, Type[BoardStrategy]] = {
    "harvard": HarvardStrategy,
    "mit": MITStrategy,
    "stanford": StanfordStrategy,
    "yale": YaleStrategy,
    "princeton": PrincetonStrategy,
}


# Boards seeded into a fresh database
BOARD_CATALOG: List[Board] = [
    Board(
        id="a4637fde-e352-491d-aad9-700a2b07156b",
        code="harvard",
        name="Harvard University",
        base_url=HARVARD_GATEWAY_URL,
        post_url=f"{HARVARD_GATEWAY_URL}#submitCareer",
        location="Cambridge, MA",
    ),
    Board(
        id="ae2272d8-3249-4997-9259-ca3dc71fdce1",
        code="mit",
        name="MIT",
        base_url="https://careers.mit.edu",
        post_url="https://careers.mit.edu/external/post-job",
        location="Cambridge, MA",
    ),
    Board(
        id="f225fb8c-26f6-4244-8764-bbd063923356",
        code="stanford",
        name="Stanford University",
        base_url="https://careersearch.stanford.edu",
        post_url="https://careersearch.stanford.edu/jobs/post",
        location="Stanford, CA",
    ),
    Board(
        id="692fa28e-d7dc-41b5-9989-ea45cc1c5999",
        code="yale",
        name="Yale University",
        base_url="https://ocs.yale.edu",
        post_url="https://ocs.yale.edu/employers/post-job",
        location="New Haven, CT",
    ),
    Board(
        id="301657f5-c95d-45af-a031-089cb4f8eff9",
        code="princeton",
        name="Princeton University",
        base_url="https://careerdevelopment.princeton.edu",
        post_url="https://princeton.joinhandshake.com/employers",
        location="Princeton, NJ",
    ),
]


def normalize_board_key(board_name: str) -> str:
    """'Harvard University' -> 'harvard', 'MIT' -> 'mit'."""
    key = (board_name or "").strip().lower()
    key = re.sub(r"\s+university.*$", "", key)
    return re.sub(r"\s+", "", key)


class StrategyRegistry:
    """
    Maps board names to strategy classes.

    resolve() builds a fresh strategy per call, so attempts never share
    strategy state.
    """

    def __init__(self, strategies: Optional[Dict[str, Type[BoardStrategy]]] = None, **strategy_kwargs):
        self._strategies = dict(STRATEGIES if strategies is None else strategies)
        self.strategy_kwargs = strategy_kwargs

    def register(self, board_name: str, strategy_cls: Type[BoardStrategy]):
        self._strategies[normalize_board_key(board_name)] = strategy_cls

    def resolve(self, board_name: str) -> Optional[BoardStrategy]:
        strategy_cls = self._strategies.get(normalize_board_key(board_name))
        if strategy_cls is None:
            return None
        return strategy_cls(**self.strategy_kwargs)

    def resolve_board(self, board: Board) -> Optional[BoardStrategy]:
        """Resolve by display name, then by board code."""
        strategy = self.resolve(board.name)
        if strategy is None and board.code:
            strategy = self.resolve(board.code)
        if strategy is None:
            logger.info(f"No posting strategy for {board.name}, using form discovery")
        return strategy

    def keys(self) -> List[str]:
        return sorted(self._strategies)

    def __contains__(self, board_name: str) -> bool:
        return normalize_board_key(board_name) in self._strategies


_default_registry = StrategyRegistry()


def resolve(board_name: str) -> Optional[BoardStrategy]:
    """Fresh strategy for a board name, or None when the board has none."""
    return _default_registry.resolve(board_name)


__all__ = [
    "BOARD_CATALOG",
    "STRATEGIES",
    "BoardStrategy",
    "HarvardStrategy",
    "LoginFlow",
    "MITStrategy",
    "PostingCredentials",
    "PrincetonStrategy",
    "StanfordStrategy",
    "StrategyRegistry",
    "YaleStrategy",
    "detect_submission_outcome",
    "format_description",
    "format_salary",
    "normalize_board_key",
    "resolve",
    "url_changed",
]
