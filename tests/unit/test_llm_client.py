"""
Unit tests -- LLM client: mock mode + dispatch.
"""
import json

import pytest

from analysis_builder.ai import llm_client
from analysis_builder.ai.llm_client import available_providers, call_llm
from analysis_builder.core.config import Settings


@pytest.fixture
def no_keys(monkeypatch):
    monkeypatch.setattr(
        llm_client, "get_settings", lambda: Settings(openai_api_key="", anthropic_api_key="")
    )


def test_mock_returns_json_selection():
    data = json.loads(call_llm("Hello world", provider="mock"))
    assert data == {"metrics": [], "breakdowns": [], "filters": []}


def test_available_providers():
    assert available_providers() == ["mock", "openai", "anthropic"]


def test_unknown_provider_raises():
    with pytest.raises(NotImplementedError, match="not supported"):
        call_llm("hi", provider="banana")


def test_openai_missing_key_raises(no_keys):
    """Should raise RuntimeError when key is empty."""
    with pytest.raises(RuntimeError, match="openai_api_key"):
        call_llm("hi", provider="openai")


def test_anthropic_missing_key_raises(no_keys):
    """Should raise RuntimeError when key is empty."""
    with pytest.raises(RuntimeError, match="anthropic_api_key"):
        call_llm("hi", provider="anthropic")


def test_default_provider_from_settings(monkeypatch):
    monkeypatch.setattr(llm_client, "get_settings", lambda: Settings(llm_provider="MOCK"))
    assert json.loads(call_llm("hi"))["metrics"] == []
