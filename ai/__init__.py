"""
AI services for the job multi-poster: LLM providers and form discovery.
"""

from .form_discovery import DiscoveryResult, FormDiscoveryService, extract_form_markup
from .providers import (
    PROVIDERS,
    AIProvider,
    AnalysisResult,
    AnthropicProvider,
    GroqProvider,
    OpenAIProvider,
    UsageTracker,
    create_provider,
    parse_analysis_response,
)

__all__ = [
    "PROVIDERS",
    "AIProvider",
    "AnalysisResult",
    "AnthropicProvider",
    "DiscoveryResult",
    "FormDiscoveryService",
    "GroqProvider",
    "OpenAIProvider",
    "UsageTracker",
    "create_provider",
    "extract_form_markup",
    "parse_analysis_response",
]
