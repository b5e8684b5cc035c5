import pytest
import requests

import study_api.completion as completion_mod
from study_api.completion import (
    ADVANCED_CHAT,
    CHAT,
    COMMENTARY,
    VERSE_ANALYSIS,
    build_commentary_messages,
    build_verse_analysis_messages,
    complete,
    require_api_key,
)
from study_api.errors import ConfigurationError, ProviderError


class FakeResponse:
    def __init__(self, status_code=200, body=None, raw=None):
        self.status_code = status_code
        self._body = body
        self._raw = raw

    @property
    def ok(self):
        return 200 <= self.status_code < 300

    def json(self):
        if self._raw is not None:
            raise ValueError("not json")
        return self._body


class Recorder:
    def __init__(self, response=None, exc=None):
        self.response = response
        self.exc = exc
        self.calls = []

    def __call__(self, url, json=None, headers=None, timeout=None):
        self.calls.append({"url": url, "json": json, "headers": headers, "timeout": timeout})
        if self.exc:
            raise self.exc
        return self.response


def _ok(text="Peace be with you.", usage=None):
    return FakeResponse(
        200,
        {
            "choices": [{"message": {"role": "assistant", "content": text}}],
            "usage": usage or {"prompt_tokens": 3, "completion_tokens": 5, "total_tokens": 8},
        },
    )


def test_require_api_key_missing(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    monkeypatch.delenv("VITE_OPENAI_API_KEY", raising=False)
    with pytest.raises(ConfigurationError):
        require_api_key()


def test_require_api_key_legacy_variable(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    monkeypatch.setenv("VITE_OPENAI_API_KEY", "sk-legacy")
    assert require_api_key() == "sk-legacy"


def test_complete_forwards_messages_in_order(monkeypatch):
    recorder = Recorder(_ok())
    monkeypatch.setattr(completion_mod.requests, "post", recorder)
    messages = [
        {"role": "user", "content": "Who wrote Romans?"},
        {"role": "assistant", "content": "Paul."},
        {"role": "user", "content": "When?"},
    ]

    result = complete(CHAT, messages, api_key="sk-test")

    assert result.text == "Peace be with you."
    assert result.model == "gpt-3.5-turbo"
    assert result.usage["total_tokens"] == 8
    call = recorder.calls[0]
    assert call["url"].endswith("/chat/completions")
    assert call["headers"]["Authorization"] == "Bearer sk-test"
    assert call["json"]["messages"] == messages
    assert call["json"]["max_tokens"] == 500
    assert call["json"]["temperature"] == 0.7


def test_complete_profiles():
    assert (ADVANCED_CHAT.model, ADVANCED_CHAT.max_tokens) == ("gpt-4o-mini", 800)
    assert (COMMENTARY.max_tokens, COMMENTARY.temperature) == (1200, 0.6)
    assert (VERSE_ANALYSIS.max_tokens, VERSE_ANALYSIS.temperature) == (1000, 0.6)
    for title in ("## Historical Context", "## Key Themes", "## Theological Significance", "## Practical Applications"):
        assert title in COMMENTARY.system_prompt
    for title in ("## Verse Text", "## Original Language Insights", "## Related Passages"):
        assert title in VERSE_ANALYSIS.system_prompt


def test_complete_prepends_system_prompt_once(monkeypatch):
    recorder = Recorder(_ok())
    monkeypatch.setattr(completion_mod.requests, "post", recorder)

    complete(COMMENTARY, [{"role": "user", "content": "Genesis 1"}], api_key="sk-test")
    complete(COMMENTARY, build_commentary_messages("Genesis", 1), api_key="sk-test")

    first, second = (c["json"]["messages"] for c in recorder.calls)
    assert first[0] == {"role": "system", "content": COMMENTARY.system_prompt}
    assert len(first) == 2
    assert [m["role"] for m in second] == ["system", "user"]
    assert "Genesis chapter 1" in second[1]["content"]


def test_build_verse_analysis_messages_quotes_input():
    messages = build_verse_analysis_messages("John 3:16")
    assert messages[0]["content"] == VERSE_ANALYSIS.system_prompt
    assert '"John 3:16"' in messages[1]["content"]


def test_complete_provider_error_message(monkeypatch):
    body = {"error": {"message": "Rate limit reached", "type": "rate_limit"}}
    monkeypatch.setattr(completion_mod.requests, "post", Recorder(FakeResponse(429, body)))
    with pytest.raises(ProviderError) as exc_info:
        complete(CHAT, [{"role": "user", "content": "Hello"}], api_key="sk-test")
    assert exc_info.value.message == "Rate limit reached"


def test_complete_provider_error_without_body(monkeypatch):
    monkeypatch.setattr(completion_mod.requests, "post", Recorder(FakeResponse(502, raw="<html>")))
    with pytest.raises(ProviderError) as exc_info:
        complete(CHAT, [{"role": "user", "content": "Hello"}], api_key="sk-test")
    assert exc_info.value.message == "Error from OpenAI API"


def test_complete_network_failure(monkeypatch):
    monkeypatch.setattr(
        completion_mod.requests, "post", Recorder(exc=requests.ConnectionError("refused"))
    )
    with pytest.raises(ProviderError):
        complete(CHAT, [{"role": "user", "content": "Hello"}], api_key="sk-test")


def test_complete_malformed_body(monkeypatch):
    monkeypatch.setattr(completion_mod.requests, "post", Recorder(FakeResponse(200, {"choices": []})))
    with pytest.raises(ProviderError):
        complete(CHAT, [{"role": "user", "content": "Hello"}], api_key="sk-test")


def test_complete_makes_single_attempt(monkeypatch):
    recorder = Recorder(FakeResponse(500, {"error": {"message": "boom"}}))
    monkeypatch.setattr(completion_mod.requests, "post", recorder)
    with pytest.raises(ProviderError):
        complete(CHAT, [{"role": "user", "content": "Hello"}], api_key="sk-test")
    assert len(recorder.calls) == 1


def test_complete_logs_latency(monkeypatch, _event_log):
    monkeypatch.setattr(completion_mod.requests, "post", Recorder(_ok()))
    complete(CHAT, [{"role": "user", "content": "Hello"}], api_key="sk-test")
    assert '"event_type": "llm_latency"' in _event_log.read_text(encoding="utf-8")
