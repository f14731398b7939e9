"""Tests for shadow.extractor: stance classification, signals, exclusion, extraction."""

from __future__ import annotations

import pytest

import claim_fusion.shadow.extractor as extractor
from claim_fusion.contracts import ProviderText, Stance
from claim_fusion.shadow.extractor import (
    classify_stance,
    detect_signals,
    exclusion_violations,
    extract_statements,
    is_excluded,
    is_substantive,
    signal_weight,
    split_paragraphs,
    split_sentences,
)


class TestClassifyStance:
    def test_prescriptive(self):
        stance, confidence = classify_stance("You should use PostgreSQL for the primary datastore.")
        assert stance == Stance.PRESCRIPTIVE
        assert confidence == pytest.approx(0.8)

    def test_cautionary(self):
        stance, confidence = classify_stance("Avoid running the database without backups.")
        assert stance == Stance.CAUTIONARY
        assert confidence == pytest.approx(0.65)

    def test_prerequisite_beats_prescriptive(self):
        stance, _ = classify_stance("You must configure the network before deploying.")
        assert stance == Stance.PREREQUISITE

    def test_no_match_defaults_to_assertive(self):
        assert classify_stance("Quantum computers exploit superposition.") == (Stance.ASSERTIVE, 0.5)

    def test_confidence_capped(self):
        _, confidence = classify_stance("You should always ensure you must use and implement it.")
        assert confidence == 1.0


class TestSignals:
    def test_all_signals(self):
        signals = detect_signals("If the cache fails, then fall back to the database but log it.")
        assert signals == {"sequence": True, "tension": True, "conditional": True}
        assert signal_weight(signals) == 6

    def test_weights(self):
        assert signal_weight({"sequence": False, "tension": True, "conditional": False}) == 1
        assert signal_weight({"sequence": True, "tension": False, "conditional": True}) == 5


class TestExclusion:
    def test_question(self):
        assert is_excluded("Should you use Redis for this?", Stance.PRESCRIPTIVE)

    def test_meta_framing(self):
        assert is_excluded("Let me explain the architecture in detail.", Stance.ASSERTIVE)

    def test_rule_scoped_to_stance(self):
        text = "The outage happened long before the migration started."
        assert is_excluded(text, Stance.PREREQUISITE)
        assert not is_excluded(text, Stance.ASSERTIVE)

    def test_soft_rule_reported_not_excluded(self):
        text = "You could also possibly use a queue here."
        assert not is_excluded(text, Stance.PRESCRIPTIVE)
        violations = exclusion_violations(text, Stance.PRESCRIPTIVE)
        assert {"id": "prescriptive_hypothetical", "reason": "Suggestion, not prescription", "severity": "soft"} in violations


class TestSplitting:
    def test_paragraphs(self):
        assert split_paragraphs("one\n\n\ntwo\n\n  \n") == ["one", "two"]

    def test_abbreviation_protected(self):
        assert split_sentences("Dr. Smith recommends testing. Then deploy it.") == [
            "Dr. Smith recommends testing.",
            "Then deploy it.",
        ]

    def test_substantive(self):
        assert is_substantive("PostgreSQL has strong transactional guarantees today.")
        assert not is_substantive("Short one.")
        assert not is_substantive("## Heading with five words here")
        assert not is_substantive("| a | b | c | d | e |")
        assert not is_substantive("Sure, here is what you need to know.")


class TestExtractStatements:
    def test_extracts_in_model_order(self, provider_texts):
        result = extract_statements(list(reversed(provider_texts)))
        statements = result["statements"]
        assert len(statements) == 8
        assert [s["id"] for s in statements] == [f"s_{i}" for i in range(8)]
        assert [s["model_index"] for s in statements] == [1, 1, 1, 1, 2, 2, 2, 2]
        assert result["meta"]["by_model"] == {1: 4, 2: 4}

    def test_location_and_paragraph(self, provider_texts):
        statements = extract_statements(provider_texts)["statements"]
        backups = statements[3]
        assert backups["text"] == "Backups must be tested regularly."
        assert backups["location"] == {"paragraph_index": 1, "sentence_index": 1}
        assert backups["full_paragraph"].startswith("However, avoid")

    def test_signals_and_stances(self, provider_texts):
        statements = extract_statements(provider_texts)["statements"]
        assert statements[2]["stance"] == Stance.CAUTIONARY
        assert statements[6]["signals"]["conditional"] is True
        assert statements[7]["stance"] == Stance.UNCERTAIN

    def test_idempotent(self, provider_texts):
        assert extract_statements(provider_texts) == extract_statements(provider_texts)

    def test_excluded_counted(self):
        text = "Should we migrate to the new cluster now? The new cluster has twice the memory."
        result = extract_statements([ProviderText(provider_id="claude", model_index=1, text=text)])
        assert len(result["statements"]) == 1
        assert result["meta"]["candidates_excluded"] == 1

    def test_truncation(self, provider_texts, monkeypatch, capsys):
        monkeypatch.setattr(extractor, "STATEMENT_LIMIT", 3)
        result = extract_statements(provider_texts)
        assert len(result["statements"]) == 3
        assert "truncated" in capsys.readouterr().err

    def test_empty(self):
        result = extract_statements([])
        assert result["statements"] == []
        assert result["meta"]["total_statements"] == 0
