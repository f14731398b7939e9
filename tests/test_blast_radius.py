"""Tests for scoring.blast_radius: composite scores, modifiers, survey gating, axes."""

from __future__ import annotations

import pytest

from claim_fusion.claims.structure import analyze_structure
from claim_fusion.contracts import ClaimEdge, EdgeType
from claim_fusion.provenance.ownership import claim_exclusivity, claim_overlap
from claim_fusion.provenance.reconstruct import new_claim
from claim_fusion.scoring.blast_radius import (
    COMPOSITE_FLOOR,
    apply_modifiers,
    cluster_axes,
    compute_blast_radius,
    consensus_factor,
    question_ceiling,
    redundancy_factor,
    score_claims,
    should_skip_survey,
)


def _claim(cid: str, supporters: list[int], sources: list[str] | None = None, *, model_count: int = 2, **flags):
    claim = new_claim(
        {"id": cid, "label": f"Label {cid}", "text": "", "supporters": supporters, "challenges": None},
        model_count,
    )
    claim["source_statement_ids"] = list(sources or [])
    claim.update(flags)
    return claim


def _score(cid: str, composite: float, query: float = 0.5) -> dict:
    return {
        "claim_id": cid,
        "claim_label": cid,
        "composite": composite,
        "raw_composite": composite,
        "components": {
            "cascade_breadth": 0.0,
            "exclusive_evidence": 0.0,
            "leverage": 0.0,
            "query_relevance": query,
            "articulation_point": 0.0,
        },
        "modifiers": [],
        "suppressed": False,
        "suppression_reason": None,
    }


def _qrel(sim: float) -> dict:
    return {
        "query_similarity": sim,
        "query_similarity_normalized": (sim + 1) / 2,
        "embedding_source": "statement",
        "paragraph_sim": 0.0,
        "recusant": 0.0,
    }


class TestFactors:
    def test_consensus_scales_with_model_count(self):
        assert consensus_factor(1.0, 4) == pytest.approx(0.5)
        assert consensus_factor(1.0, 8) == pytest.approx(0.5)
        assert consensus_factor(1.0, 2) == pytest.approx(0.75)
        assert consensus_factor(0.0, 3) == 1.0

    def test_redundancy(self):
        assert redundancy_factor(0.5) == pytest.approx(0.8)
        assert redundancy_factor(1.0) == pytest.approx(0.6)


class TestScoreClaims:
    def test_components(self):
        claims = [_claim("a", [1], ["s_0", "s_1"]), _claim("b", [2], ["s_2"]), _claim("c", [1], ["s_3"])]
        scores = score_claims(
            claims,
            cascade_risks=[{"source_id": "a", "dependent_ids": ["b", "c"], "depth": 1}],
            exclusivity=claim_exclusivity(claims),
            articulation_points=["b"],
            query_relevance={"s_0": _qrel(0.2), "s_1": _qrel(0.6)},
        )
        a, b, c = scores
        assert a["components"]["cascade_breadth"] == 1.0
        assert a["components"]["exclusive_evidence"] == 1.0
        assert a["components"]["leverage"] == 0.5
        assert a["components"]["query_relevance"] == pytest.approx(0.4)
        assert a["composite"] == pytest.approx(0.30 + 0.25 + 0.10 + 0.15 * 0.7)
        assert b["components"]["articulation_point"] == 1.0
        assert c["components"]["query_relevance"] == 0.0
        assert a["raw_composite"] == a["composite"]

    def test_monotone_in_cascade_breadth(self):
        ids = ["a", "b", "c", "d", "e"]
        claims = [_claim(cid, [1]) for cid in ids]
        composites = []
        for n in range(5):
            risks = [{"source_id": "a", "dependent_ids": ids[1 : n + 1], "depth": 1}] if n else []
            scores = score_claims(claims, cascade_risks=risks, exclusivity={}, articulation_points=[])
            composites.append(scores[0]["composite"])
        assert composites == sorted(composites)
        assert len(set(composites)) == 5

    def test_monotone_in_exclusivity(self):
        claims = [_claim("a", [1], ["s_0"]), _claim("b", [1], ["s_1"])]
        low = score_claims(
            claims,
            cascade_risks=[],
            exclusivity={"a": {"exclusive_ids": [], "shared_ids": ["s_0"], "exclusivity_ratio": 0.0}},
            articulation_points=[],
        )
        high = score_claims(
            claims,
            cascade_risks=[],
            exclusivity={"a": {"exclusive_ids": ["s_0"], "shared_ids": [], "exclusivity_ratio": 1.0}},
            articulation_points=[],
        )
        assert high[0]["composite"] - low[0]["composite"] == pytest.approx(0.25)

    def test_fragile_consensus(self):
        claims = [_claim("a", [1, 2, 3], ["s_0", "s_1"])]
        scores = score_claims(
            claims,
            cascade_risks=[],
            exclusivity={},
            articulation_points=[],
            statement_models={"s_0": 1, "s_1": 1},
        )
        assert scores[0]["fragile_consensus"] == {
            "mapper_supporter_count": 3,
            "geometric_model_diversity": 1,
        }


class TestModifiers:
    @staticmethod
    def _modified(support_ratio: float, jaccard: float) -> float:
        """Post-modifier composite of the lower-scoring claim of a redundant pair."""
        claims = [_claim("a", [1, 2], model_count=4), _claim("b", [1, 2], model_count=4)]
        claims[0]["support_ratio"] = 0.5
        claims[1]["support_ratio"] = support_ratio
        scores = [_score("a", 0.9), _score("b", 0.6)]
        apply_modifiers(scores, claims, [{"claim_a": "a", "claim_b": "b", "jaccard": jaccard}], 4)
        return scores[1]["composite"]

    def test_composite_never_rises_with_discount_inputs(self):
        ratios = [0.0, 0.25, 0.5, 0.75, 1.0]
        jaccards = [0.0, 0.3, 0.5, 0.6, 0.75, 0.9, 1.0]
        for jaccard in jaccards:
            by_ratio = [self._modified(r, jaccard) for r in ratios]
            assert by_ratio == sorted(by_ratio, reverse=True), (jaccard, by_ratio)
        for ratio in ratios:
            by_jaccard = [self._modified(ratio, j) for j in jaccards]
            assert by_jaccard == sorted(by_jaccard, reverse=True), (ratio, by_jaccard)
        assert self._modified(1.0, 1.0) < self._modified(0.0, 0.0)

    def test_chain_and_floor(self):
        claims = [
            _claim("a", [1, 2, 3, 4], model_count=4),
            _claim("b", [1], model_count=4),
        ]
        scores = [_score("a", 0.8, query=0.6), _score("b", 0.6, query=0.1)]
        overlap = [{"claim_a": "a", "claim_b": "b", "jaccard": 0.6}]
        apply_modifiers(scores, claims, overlap, 4)
        a, b = scores

        assert a["composite"] == pytest.approx(0.4)
        assert a["modifiers"] == ["consensus: x0.50 (support=1.00, models=4)"]
        assert a["suppressed"] is False

        assert b["composite"] == pytest.approx(0.6 * 0.875 * 0.5 * 0.76)
        assert b["modifiers"][0].startswith("consensus: x0.88")
        assert b["modifiers"][1] == "sole_source_offtopic: x0.50 (qrel=0.10)"
        assert b["modifiers"][2] == "redundancy: x0.76 (jaccard=0.60 with a)"
        assert b["composite"] < COMPOSITE_FLOOR
        assert b["suppressed"] is True
        assert b["suppression_reason"].startswith("below_floor(")
        assert b["raw_composite"] == 0.6

    def test_low_overlap_not_redundant(self):
        claims = [_claim("a", [1], model_count=1), _claim("b", [1], model_count=1)]
        scores = [_score("a", 0.8), _score("b", 0.7)]
        apply_modifiers(scores, claims, [{"claim_a": "a", "claim_b": "b", "jaccard": 0.5}], 1)
        assert not any(m.startswith("redundancy") for s in scores for m in s["modifiers"])


class TestSurveyGate:
    def test_skip_on_clean_convergence(self):
        claims = [_claim("a", [1, 2]), _claim("b", [1, 2])]
        skip, reason = should_skip_survey(claims, [_score("a", 0.4), _score("b", 0.3)], 0.8, 0)
        assert skip is True
        assert reason.startswith("convergence=0.80")

    def test_no_skip_on_low_convergence(self):
        assert should_skip_survey([_claim("a", [1, 2])], [_score("a", 0.4)], 0.7, 0) == (False, None)

    def test_no_skip_with_conflicts(self):
        assert should_skip_survey([_claim("a", [1, 2])], [_score("a", 0.4)], 0.9, 1) == (False, None)

    def test_no_skip_with_inversion(self):
        claims = [_claim("a", [1, 2], is_leverage_inversion=True)]
        assert should_skip_survey(claims, [_score("a", 0.4)], 0.9, 0)[0] is False

    def test_no_skip_with_sole_source_outlier(self):
        claims = [_claim("a", [1])]
        assert should_skip_survey(claims, [_score("a", 0.6)], 0.9, 0)[0] is False


class TestAxes:
    def test_cluster_by_overlap(self):
        surviving = [_score("a", 0.5), _score("b", 0.6), _score("c", 0.4)]
        overlap = [
            {"claim_a": "a", "claim_b": "b", "jaccard": 0.4},
            {"claim_a": "b", "claim_b": "c", "jaccard": 0.3},
        ]
        axes = cluster_axes(surviving, overlap)
        assert [a["id"] for a in axes] == ["axis_0", "axis_1"]
        assert sorted(axes[0]["claim_ids"]) == ["a", "b"]
        assert axes[0]["representative_claim_id"] == "b"
        assert axes[0]["max_blast_radius"] == 0.6
        assert axes[1]["claim_ids"] == ["c"]

    def test_ceiling(self):
        axes = cluster_axes([_score(c, 0.5) for c in "abcd"], [])
        claims = [_claim(c, [1, 2]) for c in "abcd"]
        assert question_ceiling([], [], claims) == 0
        assert question_ceiling(axes, [], claims) == 2
        keystone = [_claim("a", [1], is_keystone=True)]
        assert question_ceiling(axes, [], keystone) == 1
        conflicts = [
            ClaimEdge(source=f"x{i}", target=f"y{i}", type=EdgeType.CONFLICTS) for i in range(3)
        ]
        assert question_ceiling(axes, conflicts[:2], claims) == 2
        assert question_ceiling(axes, conflicts, claims) == 3
        assert question_ceiling(axes[:1], conflicts, claims) == 1


class TestComputeBlastRadius:
    def test_no_claims(self):
        result = compute_blast_radius(
            [],
            [],
            {
                "model_count": 2,
                "convergence_ratio": 0.0,
                "cascade_risks": [],
                "articulation_points": [],
                "leverage_inversions": [],
                "keystone_id": None,
                "components": [],
            },
            exclusivity={},
            overlap=[],
        )
        assert result["skip_survey"] is True
        assert result["skip_reason"] == "no_claims"

    def test_end_to_end(self):
        claims = [
            _claim("claim_1", [1], ["s_0", "s_2"]),
            _claim("claim_2", [2], ["s_1", "s_3"]),
            _claim("claim_3", [1, 2], ["s_4"]),
        ]
        edges = [ClaimEdge(source="claim_1", target="claim_2", type=EdgeType.CONFLICTS)]
        enriched, analysis = analyze_structure(claims, edges, 2)
        result = compute_blast_radius(
            enriched,
            edges,
            analysis,
            exclusivity=claim_exclusivity(enriched),
            overlap=claim_overlap(enriched),
        )
        by_id = {s["claim_id"]: s for s in result["scores"]}
        assert by_id["claim_1"]["composite"] == pytest.approx(0.525 * 0.875 * 0.5)
        assert by_id["claim_3"]["composite"] == pytest.approx(0.325 * 0.75)
        assert not any(s["suppressed"] for s in result["scores"])
        assert result["skip_survey"] is False
        assert result["question_ceiling"] == 2
        assert [a["representative_claim_id"] for a in result["axes"]] == ["claim_3", "claim_1"]
        assert result["meta"]["axis_count"] == 3
        assert result["meta"]["conflict_edge_count"] == 1
