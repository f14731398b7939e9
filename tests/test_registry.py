"""Tests for the provider adapter registry."""

from __future__ import annotations

import pytest

from claim_fusion.config import Settings
from claim_fusion.dispatch import available_adapters, build_adapters, get_adapter
from claim_fusion.dispatch.anthropic_adapter import AnthropicAdapter
from claim_fusion.dispatch.openai_compat import OpenAICompatAdapter


class TestRegistry:
    def test_adapters_register_on_import(self):
        kinds = available_adapters()
        assert "anthropic" in kinds
        assert "openai_compat" in kinds

    def test_unknown_kind(self):
        with pytest.raises(KeyError, match="Unknown adapter kind"):
            get_adapter("carrier-pigeon")


class TestBuildAdapters:
    def test_builds_by_kind(self):
        s = Settings(anthropic_api_key="sk-ant", openai_api_key="sk-oai")
        adapters = build_adapters(["claude", "chatgpt", "qwen"], s)
        assert isinstance(adapters["claude"], AnthropicAdapter)
        assert isinstance(adapters["chatgpt"], OpenAICompatAdapter)
        assert adapters["qwen"].name == "qwen"

    def test_skips_missing_credentials(self, capsys):
        s = Settings(anthropic_api_key="sk-ant", openai_api_key="")
        adapters = build_adapters(["claude", "chatgpt"], s)
        assert list(adapters) == ["claude"]
        assert "chatgpt" in capsys.readouterr().err

    def test_duplicates_collapse(self):
        s = Settings(anthropic_api_key="sk-ant")
        assert list(build_adapters(["claude", "claude"], s)) == ["claude"]
