"""Tests for AI provider adapters.

Shared behaviour (_parse, prompts, error translation) lives in BaseProvider
and is tested once via a lightweight stub. Provider-specific tests cover only
what differs: the SDK client setup and _call_api.
"""

import json
from unittest.mock import MagicMock, patch

import anthropic
import openai
import pytest
from anthropic.types import TextBlock

from prsentry_core.errors import PermanentProviderError, TransientIOError
from prsentry_core.models import ProviderConfig
from prsentry_core.providers.anthropic import AnthropicProvider
from prsentry_core.providers.base import BaseProvider, normalize_comment
from prsentry_core.providers.deepseek import DeepSeekProvider
from prsentry_core.providers.openai import OpenAIProvider
from prsentry_core.providers.registry import available_providers, build_providers, create_provider

VALID_JSON = json.dumps(
    {
        "summary": "Looks mostly fine.",
        "comments": [{"file": "src/app.py", "lineNumber": 3, "comment": "Missing error handling"}],
    }
)


class _StubProvider(BaseProvider):
    MODEL = "stub-1"

    def __init__(self, raw=VALID_JSON, error=None, model=None):
        super().__init__(ProviderConfig(provider="stub", api_key="key", model=model))
        self.raw = raw
        self.error = error
        self.models = []

    def _call_api(self, system_prompt, user_prompt, model):
        self.models.append(model)
        if self.error is not None:
            raise self.error
        return self.raw, 17


def _status_error(status):
    error = Exception(f"HTTP {status}")
    error.status_code = status
    return error


# ---------------------------------------------------------------------------
# Shared behaviour, tested once through the stub
# ---------------------------------------------------------------------------


class TestParse:
    def test_parses_summary_and_comments(self):
        result = _StubProvider()._parse(VALID_JSON)
        assert result.summary == "Looks mostly fine."
        assert len(result.comments) == 1
        assert result.comments[0].path == "src/app.py"
        assert result.comments[0].line == 3

    def test_strips_markdown_code_fences(self):
        result = _StubProvider()._parse(f"```json\n{VALID_JSON}\n```")
        assert len(result.comments) == 1

    def test_preserves_code_blocks_inside_comments(self):
        payload = json.dumps(
            {"summary": "s", "comments": [{"file": "a.py", "line": 5, "comment": "Use:\n```python\nfoo()\n```"}]}
        )
        result = _StubProvider()._parse(f"```json\n{payload}\n```")
        assert "```python" in result.comments[0].body

    def test_bare_list_of_comments(self):
        raw = json.dumps([{"path": "a.py", "line": 2, "body": "nit"}])
        result = _StubProvider()._parse(raw)
        assert result.summary == ""
        assert result.comments[0].body == "nit"

    def test_invalid_json_becomes_summary_only(self):
        result = _StubProvider()._parse("The code looks great, no issues.")
        assert result.summary == "The code looks great, no issues."
        assert result.comments == []

    def test_empty_response(self):
        result = _StubProvider()._parse("")
        assert result.summary == "No summary provided."

    def test_malformed_comment_dropped_others_kept(self):
        raw = json.dumps(
            {
                "summary": "s",
                "comments": [
                    {"file": "a.py", "comment": "no line"},
                    {"file": "a.py", "lineNumber": 4, "comment": "kept"},
                    "not an object",
                ],
            }
        )
        result = _StubProvider()._parse(raw)
        assert [c.body for c in result.comments] == ["kept"]

    def test_non_list_comments_ignored(self):
        result = _StubProvider()._parse(json.dumps({"summary": "s", "comments": "none"}))
        assert result.summary == "s"
        assert result.comments == []


class TestNormalizeComment:
    @pytest.mark.parametrize(
        "item",
        [
            {"file": "a.py", "lineNumber": 7, "comment": "x"},
            {"path": "/a.py", "line": "7", "body": "x"},
            {"filename": "a.py", "line_number": "L7", "message": "x"},
            {"file_path": "a.py", "start_line": "7-9", "text": "x"},
        ],
    )
    def test_accepts_key_variants(self, item):
        comment = normalize_comment(item)
        assert (comment.path, comment.line, comment.body) == ("a.py", 7, "x")

    @pytest.mark.parametrize(
        "item",
        [
            {"file": "a.py", "lineNumber": 0, "comment": "x"},
            {"file": "a.py", "lineNumber": True, "comment": "x"},
            {"file": "a.py", "lineNumber": "abc", "comment": "x"},
            {"file": "", "lineNumber": 1, "comment": "x"},
            {"file": "a.py", "lineNumber": 1, "comment": "   "},
            ["a.py", 1, "x"],
        ],
    )
    def test_rejects_incomplete(self, item):
        assert normalize_comment(item) is None


class TestPrompts:
    def test_system_prompt_contains_rules(self):
        prompt = _StubProvider()._build_system_prompt("## Team Rules")
        assert "## Team Rules" in prompt
        assert '"lineNumber"' in prompt

    def test_system_prompt_without_rules(self):
        assert "No specific rules provided" in _StubProvider()._build_system_prompt("")

    def test_user_prompt_contains_numbered_diff_and_files(self, fakes):
        prompt = _StubProvider()._build_user_prompt(fakes["diff"], {"src/app.py": "import os"})
        assert "### File: src/app.py" in prompt
        assert "import os" in prompt
        assert "## Numbered Diff" in prompt
        assert "   2 +password = 'hunter2'" in prompt

    def test_user_prompt_without_files(self, fakes):
        prompt = _StubProvider()._build_user_prompt(fakes["diff"], {})
        assert "Full File Contents" not in prompt


class TestReview:
    def test_returns_result_with_tokens(self, fakes):
        result = _StubProvider().review(fakes["diff"], {}, "rules")
        assert result.summary == "Looks mostly fine."
        assert result.tokens_used == 17

    def test_model_resolution(self, fakes):
        stub = _StubProvider(model="configured")
        stub.review(fakes["diff"], {}, "rules")
        stub.review(fakes["diff"], {}, "rules", model="per-job")
        assert stub.models == ["configured", "per-job"]
        fallback = _StubProvider()
        fallback.review(fakes["diff"], {}, "rules")
        assert fallback.models == ["stub-1"]

    @pytest.mark.parametrize("error", [TimeoutError("read timed out"), ConnectionError("reset")])
    def test_transport_errors_are_transient(self, error, fakes):
        with pytest.raises(TransientIOError):
            _StubProvider(error=error).review(fakes["diff"], {}, "rules")

    @pytest.mark.parametrize("status", [408, 429, 500, 503])
    def test_retryable_statuses_are_transient(self, status, fakes):
        with pytest.raises(TransientIOError):
            _StubProvider(error=_status_error(status)).review(fakes["diff"], {}, "rules")

    @pytest.mark.parametrize("status", [400, 401, 403, 404])
    def test_client_errors_are_permanent(self, status, fakes):
        with pytest.raises(PermanentProviderError):
            _StubProvider(error=_status_error(status)).review(fakes["diff"], {}, "rules")

    def test_unknown_exception_is_permanent(self, fakes):
        with pytest.raises(PermanentProviderError):
            _StubProvider(error=RuntimeError("content policy")).review(fakes["diff"], {}, "rules")

    def test_requires_api_key(self):
        with pytest.raises(PermanentProviderError):
            OpenAIProvider(ProviderConfig(provider="openai", api_key=None))


# ---------------------------------------------------------------------------
# Provider-specific
# ---------------------------------------------------------------------------


class TestOpenAIProvider:
    def test_client_has_sdk_retries_disabled(self):
        provider = OpenAIProvider(ProviderConfig(provider="openai", api_key="sk-test", timeout=45.0))
        assert provider.client.max_retries == 0
        assert provider.client.timeout == 45.0

    def test_call_api(self):
        provider = OpenAIProvider(ProviderConfig(provider="openai", api_key="sk-test"))
        response = MagicMock()
        response.choices[0].message.content = VALID_JSON
        response.usage.total_tokens = 321
        provider.client = MagicMock()
        provider.client.chat.completions.create.return_value = response

        text, tokens = provider._call_api("system", "user", "gpt-4o")

        assert text == VALID_JSON
        assert tokens == 321
        kwargs = provider.client.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "gpt-4o"
        assert kwargs["response_format"] == {"type": "json_object"}
        assert kwargs["messages"][0] == {"role": "system", "content": "system"}

    def test_connection_error_is_transient(self, fakes):
        provider = OpenAIProvider(ProviderConfig(provider="openai", api_key="sk-test"))
        provider.client = MagicMock()
        provider.client.chat.completions.create.side_effect = openai.APIConnectionError(request=MagicMock())

        with pytest.raises(TransientIOError):
            provider.review(fakes["diff"], {}, "rules")

    def test_rate_limit_is_transient(self, fakes):
        provider = OpenAIProvider(ProviderConfig(provider="openai", api_key="sk-test"))
        provider.client = MagicMock()
        provider.client.chat.completions.create.side_effect = openai.RateLimitError(
            "rate limited", response=MagicMock(status_code=429), body=None
        )

        with pytest.raises(TransientIOError):
            provider.review(fakes["diff"], {}, "rules")

    def test_bad_key_is_permanent(self, fakes):
        provider = OpenAIProvider(ProviderConfig(provider="openai", api_key="sk-test"))
        provider.client = MagicMock()
        provider.client.chat.completions.create.side_effect = openai.AuthenticationError(
            "invalid api key", response=MagicMock(status_code=401), body=None
        )

        with pytest.raises(PermanentProviderError):
            provider.review(fakes["diff"], {}, "rules")


class TestDeepSeekProvider:
    def test_uses_openai_compatible_endpoint(self):
        provider = DeepSeekProvider(ProviderConfig(provider="deepseek", api_key="sk-test"))
        assert str(provider.client.base_url).startswith("https://api.deepseek.com")
        assert provider.MODEL == "deepseek-chat"

    def test_base_url_override(self):
        provider = DeepSeekProvider(
            ProviderConfig(provider="deepseek", api_key="sk-test", base_url="https://proxy.internal/v1")
        )
        assert str(provider.client.base_url).startswith("https://proxy.internal/v1")


class TestAnthropicProvider:
    def test_client_has_sdk_retries_disabled(self):
        provider = AnthropicProvider(ProviderConfig(provider="anthropic", api_key="sk-ant"))
        assert provider.client.max_retries == 0
        assert "claude" in provider.MODEL

    def test_call_api_joins_text_blocks(self):
        provider = AnthropicProvider(ProviderConfig(provider="anthropic", api_key="sk-ant"))
        response = MagicMock()
        response.content = [TextBlock(type="text", text=VALID_JSON)]
        response.usage.input_tokens = 100
        response.usage.output_tokens = 50
        provider.client = MagicMock()
        provider.client.messages.create.return_value = response

        text, tokens = provider._call_api("system", "user", "claude-x")

        assert text == VALID_JSON
        assert tokens == 150
        kwargs = provider.client.messages.create.call_args.kwargs
        assert kwargs["system"] == "system"
        assert kwargs["temperature"] == 0.3

    def test_overloaded_is_transient(self, fakes):
        provider = AnthropicProvider(ProviderConfig(provider="anthropic", api_key="sk-ant"))
        provider.client = MagicMock()
        provider.client.messages.create.side_effect = anthropic.InternalServerError(
            "overloaded", response=MagicMock(status_code=529), body=None
        )

        with pytest.raises(TransientIOError):
            provider.review(fakes["diff"], {}, "rules")


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class TestRegistry:
    def test_builtin_providers_registered(self):
        assert {"anthropic", "deepseek", "openai"} <= set(available_providers())

    def test_create_provider(self):
        provider = create_provider(ProviderConfig(provider="deepseek", api_key="sk-test"))
        assert isinstance(provider, DeepSeekProvider)

    def test_unknown_provider(self):
        with pytest.raises(ValueError, match="Unknown provider"):
            create_provider(ProviderConfig(provider="nope", api_key="k"))

    def test_build_providers_only_with_keys(self):
        config = {
            "provider": "deepseek",
            "model": "deepseek-reasoner",
            "api_keys": {"deepseek": "sk-d", "openai": None, "anthropic": "sk-a"},
            "timeouts": {"review": 60.0},
        }

        providers = build_providers(config)

        assert set(providers) == {"deepseek", "anthropic"}
        assert providers["deepseek"].config.model == "deepseek-reasoner"
        assert providers["anthropic"].config.model is None
        assert providers["anthropic"].config.timeout == 60.0

    def test_build_providers_without_keys(self):
        with patch("prsentry_core.providers.registry.create_provider") as create:
            assert build_providers({"api_keys": {}}) == {}
        create.assert_not_called()
