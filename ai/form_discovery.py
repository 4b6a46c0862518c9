#!/usr/bin/env python3
"""
AI Form Discovery

Finds the job-posting form fields on a board we have no hand-written strategy
for. The page markup is cut down to its <form> regions, sent to the primary
AI provider and, when that provider errors, once to the fallback provider.

Usage:
    discovery = FormDiscoveryService(primary=create_provider("groq", key))
    result = await discovery.discover(html, page_url, "Some Board")
    if result.success and result.confidence >= 0.7:
        for candidate in result.usable_fields():
            ...
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from core.errors import ProviderError
from core.models import FieldRole, FormFieldCandidate

from .providers import AIProvider, AnalysisResult, UsageRecord, UsageTracker

logger = logging.getLogger(__name__)

_STRIP_BLOCKS = re.compile(r"<(script|style|noscript|svg)\b[^>]*>.*?</\1\s*>", re.IGNORECASE | re.DOTALL)
_COMMENTS = re.compile(r"<!--.*?-->", re.DOTALL)
_FORMS = re.compile(r"<form\b[^>]*>.*?</form\s*>", re.IGNORECASE | re.DOTALL)
_BODY = re.compile(r"<body\b[^>]*>(.*)</body\s*>", re.IGNORECASE | re.DOTALL)
_WHITESPACE = re.compile(r"\s+")


def extract_form_markup(html: str, max_chars: int = 8000) -> str:
    """Form regions of a page (else its body), scripts and styles removed."""
    if not html:
        return ""
    cleaned = _COMMENTS.sub("", _STRIP_BLOCKS.sub("", html))
    forms = _FORMS.findall(cleaned)
    if forms:
        excerpt = "\n".join(forms)
    else:
        body = _BODY.search(cleaned)
        excerpt = body.group(1) if body else cleaned
    excerpt = _WHITESPACE.sub(" ", excerpt).strip()
    return excerpt[:max_chars]


@dataclass
class DiscoveryResult:
    """Outcome of one discovery call."""
    success: bool
    fields: List[FormFieldCandidate] = field(default_factory=list)
    confidence: float = 0.0
    cost: float = 0.0
    provider: Optional[str] = None
    cost_exceeded: bool = False
    used_fallback: bool = False
    warnings: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    def usable_fields(self, min_confidence: float = 0.5) -> List[FormFieldCandidate]:
        """Fillable candidates at or above the per-field floor, best first."""
        return [
            f for f in self.fields
            if f.role not in (FieldRole.SUBMIT, FieldRole.OTHER) and f.confidence >= min_confidence
        ]

    def submit_field(self, min_confidence: float = 0.5) -> Optional[FormFieldCandidate]:
        candidates = [f for f in self.fields if f.role == FieldRole.SUBMIT and f.confidence >= min_confidence]
        return max(candidates, key=lambda f: f.confidence) if candidates else None

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "fields": [f.to_dict() for f in self.fields],
            "confidence": self.confidence,
            "cost": self.cost,
            "provider": self.provider,
            "cost_exceeded": self.cost_exceeded,
            "used_fallback": self.used_fallback,
            "warnings": self.warnings,
            "errors": self.errors,
        }


class FormDiscoveryService:
    """
    Primary/fallback AI form analysis with cost tracking.

    Only a ProviderError (transport, HTTP, empty body) triggers the fallback.
    A reply that parses badly is a plain ``success=False`` result. Exceeding
    the per-operation cost ceiling flags the result; what to do about it is
    up to the caller.
    """

    def __init__(
        self,
        primary: AIProvider,
        fallback: Optional[AIProvider] = None,
        usage: Optional[UsageTracker] = None,
        cost_ceiling: float = 0.01,
        max_markup_chars: int = 8000,
    ):
        self.primary = primary
        self.fallback = fallback
        self.usage = usage or UsageTracker()
        self.cost_ceiling = cost_ceiling
        self.max_markup_chars = max_markup_chars

    async def discover(self, markup: str, url: str, board_name: str) -> DiscoveryResult:
        excerpt = extract_form_markup(markup, self.max_markup_chars)
        if not excerpt:
            return DiscoveryResult(success=False, errors=["Page has no markup to analyze"])

        errors: List[str] = []
        providers = [self.primary] + ([self.fallback] if self.fallback else [])
        analysis: Optional[AnalysisResult] = None
        used_fallback = False

        for index, provider in enumerate(providers):
            try:
                analysis = await provider.analyze(excerpt, url, board_name)
                used_fallback = index > 0
                break
            except ProviderError as e:
                errors.append(str(e))
                if index + 1 < len(providers):
                    logger.warning(f"Primary AI provider failed for {board_name} ({e}), trying fallback {self.fallback.name}")
                else:
                    logger.error(f"AI form discovery failed for {board_name}: {e}")

        if analysis is None:
            return DiscoveryResult(success=False, errors=errors)

        self.usage.track(UsageRecord(
            provider=analysis.provider,
            model=analysis.model,
            input_tokens=analysis.input_tokens,
            output_tokens=analysis.output_tokens,
            cost=analysis.cost,
            operation="form_discovery",
        ))

        cost_exceeded = analysis.cost > self.cost_ceiling
        if cost_exceeded:
            logger.warning(
                f"Form discovery for {board_name} cost ${analysis.cost:.4f}, "
                f"above the ${self.cost_ceiling:.4f} ceiling"
            )

        logger.info(
            f"Form discovery for {board_name} via {analysis.provider}: "
            f"{len(analysis.fields)} fields, confidence {analysis.confidence:.2f}, cost ${analysis.cost:.5f}"
        )

        return DiscoveryResult(
            success=analysis.success,
            fields=analysis.fields,
            confidence=analysis.confidence,
            cost=analysis.cost,
            provider=analysis.provider,
            cost_exceeded=cost_exceeded,
            used_fallback=used_fallback,
            warnings=analysis.warnings,
            errors=errors + analysis.errors,
        )

    def get_provider_info(self) -> Dict[str, object]:
        def describe(provider: Optional[AIProvider]):
            if provider is None:
                return None
            return {"name": provider.name, "model": provider.model}

        return {
            "primary": describe(self.primary),
            "fallback": describe(self.fallback),
            "cost_ceiling": self.cost_ceiling,
            "max_markup_chars": self.max_markup_chars,
        }

    async def test_connection(self) -> Dict[str, bool]:
        results = {self.primary.name: await self.primary.validate_api_key()}
        if self.fallback:
            results[self.fallback.name] = await self.fallback.validate_api_key()
        return results
