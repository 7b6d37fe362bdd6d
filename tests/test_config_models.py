import pytest
from pydantic import ValidationError

from hivemind.config import ProviderConfig, ProviderDescriptor, WebSearchConfig


def test_descriptor_resolves_key_from_environment(monkeypatch):
    monkeypatch.setenv("DEEPSEEK_API_KEY", "sk-env")
    desc = ProviderDescriptor.for_provider("deepseek")
    assert desc.model == "deepseek-chat"
    assert desc.resolve_api_key() == "sk-env"


def test_inline_key_wins_over_environment(monkeypatch):
    monkeypatch.setenv("DEEPSEEK_API_KEY", "sk-env")
    desc = ProviderDescriptor(name="deepseek", model="m", api_key="sk-inline")
    assert desc.resolve_api_key() == "sk-inline"


def test_missing_key_resolves_to_none(monkeypatch):
    monkeypatch.delenv("HIVEMIND_TEST_MISSING_KEY", raising=False)
    desc = ProviderDescriptor(name="custom", model="m", api_key_env="HIVEMIND_TEST_MISSING_KEY")
    assert desc.resolve_api_key() is None


def test_base_url_resolution():
    assert ProviderDescriptor(name="x", model="m", base_url="http://h/v1/").resolve_base_url() == "http://h/v1"
    assert ProviderDescriptor(name="x", model="m").resolve_base_url() is None
    assert ProviderDescriptor(name="qwen", model="m").resolve_base_url().startswith("https://dashscope")


def test_web_search_needs_key_and_cx():
    assert not WebSearchConfig(enabled=True, api_key="k").primary_configured
    assert not WebSearchConfig(enabled=False, api_key="k", cx="c").primary_configured
    assert WebSearchConfig(enabled=True, api_key="k", cx="c").primary_configured


def test_provider_config_from_env(monkeypatch):
    monkeypatch.setenv("HIVEMIND_PROVIDER", "gemini")
    monkeypatch.setenv("ENABLE_GOOGLE_SEARCH", "true")
    monkeypatch.setenv("GOOGLE_SEARCH_API_KEY", "g-key")
    monkeypatch.setenv("GOOGLE_SEARCH_CX", "g-cx")
    cfg = ProviderConfig.from_env()
    assert [d.name for d in cfg.completion] == ["gemini", "deepseek", "qwen"]
    assert [d.name for d in cfg.knowledge] == ["perplexity"]
    assert cfg.web_search.primary_configured


def test_provider_config_defaults_are_empty_chains():
    cfg = ProviderConfig()
    assert cfg.completion == []
    assert cfg.knowledge == []
    assert cfg.cache_ttl_days == 30


def test_negative_ttl_rejected():
    with pytest.raises(ValidationError):
        ProviderConfig(cache_ttl_days=-1)
