#!/usr/bin/env python3
"""
AI Providers for Form Discovery

One provider per LLM vendor, all speaking the same interface:

    provider = create_provider("groq", api_key="...")
    result = await provider.analyze(markup, url, board_name)
    # result.success, result.fields, result.confidence, result.cost

OpenAI and Groq share the OpenAI chat-completions wire format; Anthropic uses
the Messages API. Requests go over aiohttp. Transport and HTTP failures raise
ProviderError so the caller can fail over; a response that cannot be parsed
is returned as ``success=False``, never raised.
"""

import asyncio
import json
import logging
import re
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

import aiohttp

from core.errors import ProviderError
from core.models import FieldRole, FormFieldCandidate

logger = logging.getLogger(__name__)


FORM_ANALYSIS_SYSTEM_PROMPT = """You are an expert at analyzing job posting forms on websites. Your job is to identify form fields that correspond to job posting data.

TASK: Analyze the HTML content and identify CSS selectors for job posting form fields.

REQUIRED OUTPUT: Return a JSON object with this exact structure:
{{
  "success": true,
  "fields": [
    {{
      "selector": "CSS_SELECTOR_HERE",
      "type": "title|description|location|company|email|salary|submit",
      "label": "Field label text",
      "required": true|false,
      "placeholder": "placeholder text if any",
      "confidence": 0.0-1.0
    }}
  ],
  "formUrl": "{url}",
  "boardName": "{board_name}",
  "confidence": 0.0-1.0,
  "warnings": ["any warnings about the form"],
  "errors": []
}}

FIELD TYPES TO FIND:
- title: Job title input field
- description: Job description textarea
- location: Job location input
- company: Company name input
- email: Contact email input
- salary: Salary/compensation input
- submit: Submit/Post button

SELECTOR PRIORITIES:
1. Look for inputs/textareas with name attributes containing relevant keywords
2. Look for ID attributes with relevant keywords
3. Look for placeholder text that matches job fields
4. Look for nearby labels that indicate field purpose
5. Use class names as last resort

Be conservative with confidence scores. Only return confidence > 0.8 for very obvious matches.
Return empty arrays if no form is found, but still return valid JSON structure."""

FORM_ANALYSIS_USER_PROMPT = """Analyze this job posting form HTML and identify the selectors:

URL: {url}
Board: {board_name}

HTML Content:
{markup}"""


@dataclass
class ProviderResponse:
    """Raw completion plus token accounting."""
    content: str
    provider: str
    model: str
    input_tokens: int = 0
    output_tokens: int = 0
    cost: float = 0.0
    duration_ms: float = 0.0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


@dataclass
class AnalysisResult:
    """Form analysis as returned by a provider."""
    success: bool
    fields: List[FormFieldCandidate] = field(default_factory=list)
    confidence: float = 0.0
    cost: float = 0.0
    provider: str = ""
    model: str = ""
    input_tokens: int = 0
    output_tokens: int = 0
    warnings: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "fields": [f.to_dict() for f in self.fields],
            "confidence": self.confidence,
            "cost": self.cost,
            "provider": self.provider,
            "model": self.model,
            "warnings": self.warnings,
            "errors": self.errors,
        }


# ============== Usage tracking ==============

@dataclass
class UsageRecord:
    provider: str
    model: str
    input_tokens: int
    output_tokens: int
    cost: float
    operation: str
    timestamp: datetime = field(default_factory=datetime.now)


class UsageTracker:
    """Running totals of AI spend. One instance is shared by the discovery service."""

    def __init__(self, max_records: int = 1000):
        self.max_records = max_records
        self._records: List[UsageRecord] = []
        self._total_cost = 0.0
        self._requests = 0

    def track(self, record: UsageRecord):
        self._records.append(record)
        if len(self._records) > self.max_records:
            self._records = self._records[-self.max_records:]
        self._total_cost += record.cost
        self._requests += 1

    @property
    def total_cost(self) -> float:
        return self._total_cost

    @property
    def request_count(self) -> int:
        return self._requests

    def cost_by_provider(self) -> Dict[str, float]:
        totals: Dict[str, float] = {}
        for record in self._records:
            totals[record.provider] = totals.get(record.provider, 0.0) + record.cost
        return totals

    def recent(self, hours: int = 24) -> List[UsageRecord]:
        cutoff = datetime.now() - timedelta(hours=hours)
        return [r for r in self._records if r.timestamp >= cutoff]

    def summary(self) -> Dict[str, Any]:
        last_day = self.recent(24)
        return {
            "total_cost": round(self._total_cost, 6),
            "requests": self._requests,
            "cost_by_provider": {k: round(v, 6) for k, v in self.cost_by_provider().items()},
            "last_24h_cost": round(sum(r.cost for r in last_day), 6),
            "last_24h_requests": len(last_day),
        }


# ============== Response parsing ==============

def extract_json_object(content: str) -> Optional[dict]:
    """Outermost JSON object in a model reply (code fences tolerated)."""
    if not content:
        return None
    text = content.strip()
    fenced = re.search(r"```(?:json)?\s*(.*?)```", text, re.DOTALL)
    if fenced:
        text = fenced.group(1).strip()
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError:
        start = text.find("{")
        end = text.rfind("}") + 1
        if start < 0 or end <= start:
            return None
        try:
            parsed = json.loads(text[start:end])
        except json.JSONDecodeError:
            return None
    return parsed if isinstance(parsed, dict) else None


def _clamp(value: Any) -> Optional[float]:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return max(0.0, min(1.0, number))


def parse_analysis_response(content: str) -> AnalysisResult:
    """
    Validate a form-analysis reply.

    Malformed replies become success=False. Individual field entries without
    a selector or a numeric confidence are dropped; unknown roles become
    'other'.
    """
    data = extract_json_object(content)
    if data is None:
        return AnalysisResult(success=False, errors=["AI response was not valid JSON"])

    raw_fields = data.get("fields")
    if not isinstance(raw_fields, list):
        return AnalysisResult(success=False, errors=["AI response has no fields list"])

    fields = []
    for entry in raw_fields:
        if not isinstance(entry, dict):
            continue
        selector = entry.get("selector")
        confidence = _clamp(entry.get("confidence"))
        if not isinstance(selector, str) or not selector.strip() or confidence is None:
            continue
        fields.append(FormFieldCandidate(
            role=FieldRole.parse(entry.get("type", entry.get("role"))),
            selector=selector.strip(),
            confidence=confidence,
            label=entry.get("label") if isinstance(entry.get("label"), str) else None,
            placeholder=entry.get("placeholder") if isinstance(entry.get("placeholder"), str) else None,
            required=bool(entry.get("required", False)),
        ))
    fields.sort(key=lambda f: f.confidence, reverse=True)

    confidence = _clamp(data.get("confidence"))
    warnings = data.get("warnings") if isinstance(data.get("warnings"), list) else []
    errors = data.get("errors") if isinstance(data.get("errors"), list) else []

    return AnalysisResult(
        success=data.get("success") is not False and confidence is not None,
        fields=fields,
        confidence=confidence or 0.0,
        warnings=[str(w) for w in warnings],
        errors=[str(e) for e in errors],
    )


def build_analysis_messages(markup: str, url: str, board_name: str) -> List[Dict[str, str]]:
    return [
        {"role": "system", "content": FORM_ANALYSIS_SYSTEM_PROMPT.format(url=url, board_name=board_name)},
        {"role": "user", "content": FORM_ANALYSIS_USER_PROMPT.format(url=url, board_name=board_name, markup=markup)},
    ]


# ============== Providers ==============

class AIProvider:
    """Base class: one LLM vendor."""

    name = "base"
    DEFAULT_MODEL = ""
    # USD per 1M tokens: (input, output)
    PRICING: Dict[str, Tuple[float, float]] = {}

    def __init__(
        self,
        api_key: str,
        model: Optional[str] = None,
        timeout: float = 30.0,
        temperature: float = 0.1,
        max_tokens: int = 2048,
    ):
        if not api_key:
            raise ValueError(f"{self.name} API key is required")
        self.api_key = api_key
        self.model = model or self.DEFAULT_MODEL
        self.timeout = timeout
        self.temperature = temperature
        self.max_tokens = max_tokens

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} {self.model}>"

    def cost_for(self, input_tokens: int, output_tokens: int) -> float:
        pricing = self.PRICING.get(self.model)
        if not pricing:
            return 0.0
        return (input_tokens / 1_000_000) * pricing[0] + (output_tokens / 1_000_000) * pricing[1]

    async def complete(self, messages: List[Dict[str, str]], max_tokens: Optional[int] = None) -> ProviderResponse:
        raise NotImplementedError

    async def analyze(self, markup: str, url: str, board_name: str) -> AnalysisResult:
        """Ask the model for the form's field selectors. Raises ProviderError."""
        response = await self.complete(build_analysis_messages(markup, url, board_name))
        result = parse_analysis_response(response.content)
        result.cost = response.cost
        result.input_tokens = response.input_tokens
        result.output_tokens = response.output_tokens
        result.provider = self.name
        result.model = self.model
        if not result.success:
            logger.warning(f"[{self.name}] Unusable form analysis for {board_name}: {result.errors}")
        return result

    async def validate_api_key(self) -> bool:
        try:
            await self.complete([{"role": "user", "content": "Hi"}], max_tokens=1)
            return True
        except ProviderError as e:
            logger.warning(f"[{self.name}] API key validation failed: {e}")
            return False

    async def _post_json(self, url: str, headers: Dict[str, str], payload: Dict[str, Any]) -> Dict[str, Any]:
        try:
            async with aiohttp.ClientSession() as session:
                async with session.post(
                    url,
                    headers=headers,
                    json=payload,
                    timeout=aiohttp.ClientTimeout(total=self.timeout),
                ) as response:
                    try:
                        data = await response.json(content_type=None)
                    except (json.JSONDecodeError, aiohttp.ContentTypeError):
                        data = {}
                    if response.status >= 400:
                        error = data.get("error", {}) if isinstance(data, dict) else {}
                        message = error.get("message") if isinstance(error, dict) else str(error)
                        raise ProviderError(self.name, f"HTTP {response.status}: {message or 'request failed'}")
                    if not isinstance(data, dict):
                        raise ProviderError(self.name, "empty response body")
                    return data
        except aiohttp.ClientError as e:
            raise ProviderError(self.name, f"request failed: {e}")
        except asyncio.TimeoutError:
            raise ProviderError(self.name, f"request timed out after {self.timeout}s")


class OpenAICompatibleProvider(AIProvider):
    """Chat-completions API (OpenAI and OpenAI-compatible vendors)."""

    BASE_URL = "https://api.openai.com/v1"
    JSON_MODE = True

    def __init__(self, api_key: str, model: Optional[str] = None, base_url: Optional[str] = None, **kwargs):
        super().__init__(api_key, model, **kwargs)
        self.base_url = (base_url or self.BASE_URL).rstrip("/")

    async def complete(self, messages: List[Dict[str, str]], max_tokens: Optional[int] = None) -> ProviderResponse:
        start = time.monotonic()
        payload = {
            "model": self.model,
            "messages": messages,
            "temperature": self.temperature,
            "max_tokens": max_tokens or self.max_tokens,
        }
        if self.JSON_MODE and max_tokens is None:
            payload["response_format"] = {"type": "json_object"}

        data = await self._post_json(
            f"{self.base_url}/chat/completions",
            {"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"},
            payload,
        )

        choices = data.get("choices") or []
        if not choices:
            raise ProviderError(self.name, "response has no choices")
        content = (choices[0].get("message") or {}).get("content") or ""

        usage = data.get("usage") or {}
        input_tokens = int(usage.get("prompt_tokens", 0))
        output_tokens = int(usage.get("completion_tokens", 0))

        return ProviderResponse(
            content=content,
            provider=self.name,
            model=self.model,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            cost=self.cost_for(input_tokens, output_tokens),
            duration_ms=(time.monotonic() - start) * 1000,
        )


class OpenAIProvider(OpenAICompatibleProvider):
    name = "openai"
    DEFAULT_MODEL = "gpt-4o-mini"
    BASE_URL = "https://api.openai.com/v1"
    PRICING = {
        "gpt-4o": (2.50, 10.00),
        "gpt-4o-mini": (0.15, 0.60),
        "gpt-4-turbo": (10.00, 30.00),
        "gpt-4": (30.00, 60.00),
        "gpt-3.5-turbo": (0.50, 1.50),
    }


class GroqProvider(OpenAICompatibleProvider):
    name = "groq"
    DEFAULT_MODEL = "llama-3.1-8b-instant"
    BASE_URL = "https://api.groq.com/openai/v1"
    PRICING = {
        "llama-3.3-70b-versatile": (0.59, 0.79),
        "llama-3.1-70b-versatile": (0.59, 0.79),
        "llama-3.1-8b-instant": (0.05, 0.10),
        "mixtral-8x7b-32768": (0.24, 0.24),
        "gemma-7b-it": (0.07, 0.07),
    }


class AnthropicProvider(AIProvider):
    """Anthropic Messages API."""

    name = "anthropic"
    DEFAULT_MODEL = "claude-3-5-haiku-20241022"
    BASE_URL = "https://api.anthropic.com/v1"
    API_VERSION = "2023-06-01"
    PRICING = {
        "claude-3-5-sonnet-20241022": (3.00, 15.00),
        "claude-3-5-haiku-20241022": (0.25, 1.25),
        "claude-3-opus-20240229": (15.00, 75.00),
        "claude-3-sonnet-20240229": (3.00, 15.00),
        "claude-3-haiku-20240307": (0.25, 1.25),
    }

    async def complete(self, messages: List[Dict[str, str]], max_tokens: Optional[int] = None) -> ProviderResponse:
        start = time.monotonic()
        system = "\n\n".join(m["content"] for m in messages if m["role"] == "system")
        payload = {
            "model": self.model,
            "max_tokens": max_tokens or self.max_tokens,
            "temperature": self.temperature,
            "messages": [m for m in messages if m["role"] != "system"],
        }
        if system:
            payload["system"] = system

        data = await self._post_json(
            f"{self.BASE_URL}/messages",
            {
                "x-api-key": self.api_key,
                "anthropic-version": self.API_VERSION,
                "content-type": "application/json",
            },
            payload,
        )

        blocks = data.get("content") or []
        content = "".join(b.get("text", "") for b in blocks if isinstance(b, dict) and b.get("type") == "text")

        usage = data.get("usage") or {}
        input_tokens = int(usage.get("input_tokens", 0))
        output_tokens = int(usage.get("output_tokens", 0))

        return ProviderResponse(
            content=content,
            provider=self.name,
            model=self.model,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            cost=self.cost_for(input_tokens, output_tokens),
            duration_ms=(time.monotonic() - start) * 1000,
        )


PROVIDERS = {
    "openai": OpenAIProvider,
    "groq": GroqProvider,
    "anthropic": AnthropicProvider,
}


def create_provider(name: str, api_key: str, model: Optional[str] = None, **kwargs) -> AIProvider:
    """Build a provider by name ('openai', 'groq', 'anthropic')."""
    provider_cls = PROVIDERS.get((name or "").lower())
    if provider_cls is None:
        raise ValueError(f"Unknown AI provider '{name}'. Available: {', '.join(sorted(PROVIDERS))}")
    return provider_cls(api_key, model, **kwargs)
