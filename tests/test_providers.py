"""
Tests for AI providers: wire formats, pricing and defensive parsing.
HTTP is never touched; _post_json is patched.
"""

import json
from unittest.mock import AsyncMock, patch

import pytest

from ai.providers import (
    AnthropicProvider,
    GroqProvider,
    OpenAIProvider,
    UsageRecord,
    UsageTracker,
    create_provider,
    extract_json_object,
    parse_analysis_response,
)
from core.errors import ProviderError
from core.models import FieldRole

ANALYSIS = {
    "success": True,
    "fields": [
        {"selector": "#desc", "type": "description", "confidence": 0.8},
        {"selector": "#title", "type": "title", "confidence": 0.95, "label": "Job Title", "required": True},
        {"selector": "button[type=submit]", "type": "submit", "confidence": 0.9},
        {"selector": "#phone", "type": "phone", "confidence": 0.6},
        {"selector": "", "type": "email", "confidence": 0.9},
        {"selector": "#salary", "type": "salary", "confidence": "high"},
    ],
    "confidence": 0.88,
    "warnings": ["captcha present"],
}


def openai_reply(content, prompt_tokens=1000, completion_tokens=200):
    return {
        "choices": [{"message": {"role": "assistant", "content": content}}],
        "usage": {"prompt_tokens": prompt_tokens, "completion_tokens": completion_tokens},
    }


class TestParsing:
    def test_valid_reply(self):
        result = parse_analysis_response(json.dumps(ANALYSIS))

        assert result.success
        assert result.confidence == 0.88
        assert [f.selector for f in result.fields] == ["#title", "button[type=submit]", "#desc", "#phone"]
        assert result.fields[0].role == FieldRole.TITLE
        assert result.fields[0].required
        assert result.fields[-1].role == FieldRole.OTHER
        assert result.warnings == ["captcha present"]

    def test_code_fenced_reply(self):
        content = "Here you go:\n```json\n" + json.dumps(ANALYSIS) + "\n```"
        assert parse_analysis_response(content).success

    def test_prose_around_json(self):
        assert extract_json_object('Sure! {"a": 1} hope that helps') == {"a": 1}

    @pytest.mark.parametrize("content", [
        "",
        "I could not find a form on this page.",
        "[1, 2, 3]",
        '{"success": true, "confidence": 0.9}',
        '{"fields": [], "confidence": "unknown"}',
        '{"success": false, "fields": [], "confidence": 0.9}',
    ])
    def test_malformed_replies_are_unsuccessful(self, content):
        assert parse_analysis_response(content).success is False

    def test_confidence_is_clamped(self):
        result = parse_analysis_response(json.dumps({
            "fields": [{"selector": "#t", "type": "title", "confidence": 7}],
            "confidence": 1.5,
        }))
        assert result.confidence == 1.0
        assert result.fields[0].confidence == 1.0


@pytest.mark.asyncio
class TestOpenAICompatible:
    async def test_groq_request_and_cost(self):
        provider = GroqProvider(api_key="gsk-test")
        with patch.object(provider, "_post_json", new=AsyncMock(return_value=openai_reply(json.dumps(ANALYSIS)))) as post:
            result = await provider.analyze("<form></form>", "https://x.test/post", "X Careers")

        url, headers, payload = post.await_args.args
        assert url == "https://api.groq.com/openai/v1/chat/completions"
        assert headers["Authorization"] == "Bearer gsk-test"
        assert payload["model"] == "llama-3.1-8b-instant"
        assert payload["response_format"] == {"type": "json_object"}
        assert "X Careers" in payload["messages"][0]["content"]
        assert "<form></form>" in payload["messages"][1]["content"]

        assert result.success
        assert result.provider == "groq"
        # 1000 * 0.05/1M + 200 * 0.10/1M
        assert result.cost == pytest.approx(0.00007)

    async def test_openai_pricing(self):
        provider = OpenAIProvider(api_key="sk-test")
        assert provider.cost_for(1_000_000, 1_000_000) == pytest.approx(0.75)
        assert OpenAIProvider(api_key="sk", model="unknown-model").cost_for(1000, 1000) == 0.0

    async def test_no_choices_raises(self):
        provider = OpenAIProvider(api_key="sk-test")
        with patch.object(provider, "_post_json", new=AsyncMock(return_value={"choices": []})):
            with pytest.raises(ProviderError):
                await provider.analyze("<form/>", "https://x.test", "X")

    async def test_non_json_reply_is_not_an_error(self):
        provider = OpenAIProvider(api_key="sk-test")
        with patch.object(provider, "_post_json", new=AsyncMock(return_value=openai_reply("no form here"))):
            result = await provider.analyze("<form/>", "https://x.test", "X")
        assert result.success is False
        assert result.cost > 0

    async def test_validate_api_key(self):
        provider = OpenAIProvider(api_key="sk-test")
        with patch.object(provider, "_post_json", new=AsyncMock(side_effect=ProviderError("openai", "HTTP 401: bad key"))):
            assert await provider.validate_api_key() is False
        with patch.object(provider, "_post_json", new=AsyncMock(return_value=openai_reply("Hi"))) as post:
            assert await provider.validate_api_key() is True
        assert "response_format" not in post.await_args.args[2]


@pytest.mark.asyncio
class TestAnthropic:
    async def test_messages_format(self):
        provider = AnthropicProvider(api_key="sk-ant-test")
        reply = {
            "content": [{"type": "text", "text": json.dumps(ANALYSIS)}],
            "usage": {"input_tokens": 2000, "output_tokens": 400},
        }
        with patch.object(provider, "_post_json", new=AsyncMock(return_value=reply)) as post:
            result = await provider.analyze("<form/>", "https://x.test", "X")

        url, headers, payload = post.await_args.args
        assert url == "https://api.anthropic.com/v1/messages"
        assert headers["x-api-key"] == "sk-ant-test"
        assert headers["anthropic-version"] == "2023-06-01"
        assert "system" in payload
        assert all(m["role"] != "system" for m in payload["messages"])
        assert result.success
        assert result.input_tokens == 2000
        assert result.cost == pytest.approx(2000 * 0.25 / 1e6 + 400 * 1.25 / 1e6)


class TestFactory:
    def test_create_by_name(self):
        assert isinstance(create_provider("GROQ", "k"), GroqProvider)
        assert create_provider("openai", "k", model="gpt-4o").model == "gpt-4o"

    def test_unknown_provider(self):
        with pytest.raises(ValueError):
            create_provider("moonshot", "k")

    def test_key_required(self):
        with pytest.raises(ValueError):
            GroqProvider(api_key="")


class TestUsageTracker:
    def test_totals(self):
        usage = UsageTracker()
        usage.track(UsageRecord("groq", "m", 100, 10, 0.001, "form_discovery"))
        usage.track(UsageRecord("openai", "m", 100, 10, 0.004, "form_discovery"))
        usage.track(UsageRecord("groq", "m", 100, 10, 0.002, "form_discovery"))

        assert usage.total_cost == pytest.approx(0.007)
        assert usage.request_count == 3
        assert usage.cost_by_provider() == pytest.approx({"groq": 0.003, "openai": 0.004})
        summary = usage.summary()
        assert summary["requests"] == 3
        assert summary["last_24h_requests"] == 3

    def test_record_cap(self):
        usage = UsageTracker(max_records=2)
        for _ in range(5):
            usage.track(UsageRecord("groq", "m", 1, 1, 0.001, "form_discovery"))
        assert len(usage.recent()) == 2
        assert usage.request_count == 5
