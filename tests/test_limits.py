"""Tests for dispatch.limits."""

from __future__ import annotations

from claim_fusion.dispatch.limits import get_limit, is_near_limit, is_too_long


class TestLimits:
    def test_chatgpt_limit(self):
        assert get_limit("chatgpt")["max_input_chars"] == 32_000

    def test_unknown_provider_unlimited(self):
        assert get_limit("local-llm") is None
        assert not is_too_long("local-llm", "x" * 1_000_000)

    def test_too_long_is_strict(self):
        assert not is_too_long("chatgpt", "x" * 32_000)
        assert is_too_long("chatgpt", "x" * 32_001)

    def test_near_limit(self):
        assert is_near_limit("claude", "x" * 100_001)
        assert not is_near_limit("claude", "x" * 50_000)
