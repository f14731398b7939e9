"""Tests for provenance: competitive allocation, continuous field, mixed merge, ownership, reconstruction."""

from __future__ import annotations

import pytest
from conftest import angle_vector, make_statement

from claim_fusion.contracts import EvidenceClass, Paragraph, PoolOrigin, Region, Stance
from claim_fusion.provenance.competitive import (
    allocate_competitive,
    claim_bulk,
    competitive_weights,
    statement_threshold,
)
from claim_fusion.provenance.continuous import (
    compute_continuous_field,
    mean_similarity_to,
    recovery_candidates,
)
from claim_fusion.provenance.mixed import (
    classify_global,
    compute_mixed_provenance,
    promote_boundary,
)
from claim_fusion.provenance.ownership import (
    claim_exclusivity,
    claim_overlap,
    jaccard,
    statement_ownership,
)
from claim_fusion.provenance.reconstruct import (
    claim_embedding_text,
    match_by_similarity,
    new_claim,
    reconstruct_provenance,
)

# Statement id -> (angle in degrees, model index)
GEOMETRY = {
    "s_0": (0, 1),
    "s_1": (10, 2),
    "s_2": (30, 3),
    "s_3": (70, 1),
    "s_4": (90, 1),
    "s_5": (100, 2),
}


def _paragraph(pid: str, statement_ids: list[str]) -> Paragraph:
    return Paragraph(
        id=pid,
        model_index=1,
        paragraph_index=0,
        statement_ids=statement_ids,
        dominant_stance=Stance.ASSERTIVE,
        contested=False,
        confidence=0.5,
        signals={"sequence": False, "tension": False, "conditional": False},
        statements=[],
        text="",
    )


@pytest.fixture
def corpus():
    statements = [make_statement(sid, model) for sid, (_, model) in GEOMETRY.items()]
    paragraphs = [
        _paragraph("p_0", ["s_0", "s_1"]),
        _paragraph("p_1", ["s_2", "s_3"]),
        _paragraph("p_2", ["s_4", "s_5"]),
    ]
    statement_vectors = {sid: angle_vector(angle) for sid, (angle, _) in GEOMETRY.items()}
    paragraph_vectors = {"p_0": angle_vector(5), "p_1": angle_vector(50), "p_2": angle_vector(95)}
    claim_vectors = {"claim_1": angle_vector(0), "claim_2": angle_vector(95)}
    regions = [
        Region(id="r_0", kind="component", node_ids=["p_0", "p_1"], statement_ids=[], source_id="comp_0", model_indices=[]),
        Region(id="r_1", kind="patch", node_ids=["p_2"], statement_ids=[], source_id="patch_p_2", model_indices=[]),
    ]
    return {
        "statements": statements,
        "paragraphs": paragraphs,
        "statement_vectors": statement_vectors,
        "paragraph_vectors": paragraph_vectors,
        "claim_vectors": claim_vectors,
        "regions": regions,
        "models": {sid: model for sid, (_, model) in GEOMETRY.items()},
        "statement_paragraph": {sid: p["id"] for p in paragraphs for sid in p["statement_ids"]},
    }


def _mapper_claim(cid: str, supporters: list[int], label: str = "Label") -> dict:
    return {"id": cid, "label": label, "text": "Some text", "supporters": supporters, "challenges": None}


class TestCompetitive:
    def test_threshold_two_claims_is_mean(self):
        assert statement_threshold([0.9, 0.5]) == pytest.approx(0.7)

    def test_threshold_three_claims_adds_sigma(self):
        assert statement_threshold([0.0, 0.5, 1.0]) == pytest.approx(0.5 + (1 / 6) ** 0.5)

    def test_weights_proportional_to_excess(self):
        weights = competitive_weights(
            {"claim_a": 0.9, "claim_b": 0.85}, {"claim_a": 0.8, "claim_b": 0.82}
        )
        assert weights["claim_a"] == pytest.approx(0.1 / 0.13)
        assert weights["claim_b"] == pytest.approx(0.03 / 0.13)
        assert weights["claim_a"] / weights["claim_b"] == pytest.approx(0.1 / 0.03)
        assert sum(weights.values()) == pytest.approx(1.0)

    def test_no_claim_clears_threshold(self):
        assert competitive_weights({"claim_a": 0.5}, {"claim_a": 0.5}) == {}

    def test_allocation(self, corpus):
        allocation = allocate_competitive(
            corpus["claim_vectors"], corpus["statement_vectors"], corpus["statement_paragraph"]
        )
        assert allocation["claim_statements"]["claim_1"] == ["s_0", "s_1", "s_2"]
        assert allocation["claim_statements"]["claim_2"] == ["s_3", "s_4", "s_5"]
        assert allocation["claim_paragraphs"]["claim_1"] == ["p_0", "p_1"]
        assert allocation["claim_paragraphs"]["claim_2"] == ["p_1", "p_2"]
        for weights in allocation["weights"].values():
            assert sum(weights.values()) == pytest.approx(1.0)
        assert claim_bulk(allocation, "claim_1") == pytest.approx(3.0)

    def test_single_claim_allocates_nothing(self, corpus):
        allocation = allocate_competitive(
            {"claim_1": angle_vector(0)}, corpus["statement_vectors"], corpus["statement_paragraph"]
        )
        assert allocation["weights"] == {}
        assert allocation["claim_statements"] == {"claim_1": []}


class TestContinuous:
    def test_mean_similarity_to_excludes_self(self):
        members = {"a", "b"}
        vectors = {"a": [1.0, 0.0], "b": [0.0, 1.0]}
        member_sum = [1.0, 1.0]
        assert mean_similarity_to("a", vectors["a"], members, member_sum) == pytest.approx(0.0)
        assert mean_similarity_to("c", [1.0, 0.0], members, member_sum) == pytest.approx(0.5)

    def test_only_member_scores_one(self):
        assert mean_similarity_to("a", [1.0, 0.0], {"a"}, [1.0, 0.0]) == 1.0

    def test_field_and_recovery(self):
        vectors = {
            "s_0": angle_vector(0),
            "s_1": angle_vector(0),
            "s_2": angle_vector(90),
            "s_3": angle_vector(90),
            "s_4": angle_vector(90),
        }
        field = compute_continuous_field("claim_1", angle_vector(0), vectors)
        assert field["core_statement_ids"] == ["s_0", "s_1"]
        assert field["scores"]["s_0"]["z_claim"] == pytest.approx(1.224745, abs=1e-5)
        assert field["scores"]["s_0"]["evidence_score"] == pytest.approx(2.449490, abs=1e-5)
        assert field["scores"]["s_2"]["in_core"] is False
        assert recovery_candidates(field, ["s_0"]) == ["s_1"]
        assert recovery_candidates(field, ["s_0", "s_1"]) == []

    def test_flat_field_has_no_core(self):
        vectors = {"s_0": angle_vector(10), "s_1": angle_vector(10)}
        field = compute_continuous_field("claim_1", angle_vector(0), vectors)
        assert field["core_statement_ids"] == []
        assert all(s["evidence_score"] == 0.0 for s in field["scores"].values())


class TestMixed:
    def test_classify_global(self):
        assert classify_global(0.5, 0.5, 0.25) == EvidenceClass.CORE
        assert classify_global(0.25, 0.5, 0.25) == EvidenceClass.BOUNDARY
        assert classify_global(0.2, 0.5, 0.25) == EvidenceClass.REMOVED

    def test_zero_differential_promotes(self):
        kept, differential = promote_boundary(0.6, 0.6)
        assert kept is True
        assert differential == 0.0

    def test_positive_differential_rejected(self):
        kept, differential = promote_boundary(0.5, 0.625)
        assert kept is False
        assert differential == pytest.approx(0.125)

    def test_pool_verdicts_and_supporter_filter(self, corpus):
        allocation = allocate_competitive(
            corpus["claim_vectors"], corpus["statement_vectors"], corpus["statement_paragraph"]
        )
        result = compute_mixed_provenance(
            "claim_1",
            corpus["claim_vectors"]["claim_1"],
            [1, 2],
            corpus["paragraphs"],
            corpus["paragraph_vectors"],
            corpus["statement_vectors"],
            corpus["models"],
            allocation,
        )
        assert result["paragraph_pool"] == [
            {"paragraph_id": "p_0", "origin": PoolOrigin.BOTH},
            {"paragraph_id": "p_1", "origin": PoolOrigin.COMPETITIVE_ONLY},
        ]
        verdicts = {v["statement_id"]: v for v in result["verdicts"]}
        assert verdicts["s_0"]["reason"] == "core"
        assert verdicts["s_3"]["evidence_class"] == EvidenceClass.BOUNDARY
        assert verdicts["s_3"]["reason"] == "boundary_generic"
        assert verdicts["s_3"]["differential"] > 0
        assert result["canonical_statement_ids"] == ["s_0", "s_1"]
        assert result["dropped_by_supporter_filter"] == ["s_2"]


class TestOwnership:
    def _claims(self):
        a = new_claim(_mapper_claim("claim_1", [1]), 2)
        b = new_claim(_mapper_claim("claim_2", [2]), 2)
        a["source_statement_ids"] = ["s_0", "s_1"]
        b["source_statement_ids"] = ["s_1", "s_2"]
        return [a, b]

    def test_ownership(self):
        owners = statement_ownership(self._claims())
        assert owners["s_1"] == {"claim_1", "claim_2"}
        assert owners["s_0"] == {"claim_1"}

    def test_exclusivity(self):
        exclusivity = claim_exclusivity(self._claims())
        assert exclusivity["claim_1"]["exclusive_ids"] == ["s_0"]
        assert exclusivity["claim_1"]["shared_ids"] == ["s_1"]
        assert exclusivity["claim_1"]["exclusivity_ratio"] == 0.5

    def test_exclusivity_without_evidence(self):
        claim = new_claim(_mapper_claim("claim_1", [1]), 1)
        assert claim_exclusivity([claim])["claim_1"]["exclusivity_ratio"] == 0.0

    def test_jaccard(self):
        assert jaccard(set(), set()) == 1.0
        assert jaccard({"a"}, set()) == 0.0
        assert jaccard({"a", "b"}, {"b", "c"}) == pytest.approx(1 / 3)

    def test_overlap(self):
        overlap = claim_overlap(self._claims())
        assert overlap == [{"claim_a": "claim_1", "claim_b": "claim_2", "jaccard": pytest.approx(1 / 3)}]


class TestReconstruct:
    def test_embedding_text(self):
        assert claim_embedding_text(_mapper_claim("claim_1", [1], label="Use Postgres")) == (
            "Use Postgres. Some text"
        )

    def test_new_claim_support_ratio(self):
        claim = new_claim(_mapper_claim("claim_1", [1, 3]), 4)
        assert claim["support_ratio"] == 0.5
        assert claim["tier"] == 0
        assert claim["source_statement_ids"] == []

    def test_mixed_path(self, corpus):
        result = reconstruct_provenance(
            [_mapper_claim("claim_1", [1, 2]), _mapper_claim("claim_2", [1, 2])],
            corpus["statements"],
            corpus["paragraphs"],
            corpus["regions"],
            claim_vectors=corpus["claim_vectors"],
            statement_vectors=corpus["statement_vectors"],
            paragraph_vectors=corpus["paragraph_vectors"],
            model_count=3,
        )
        first, second = result["claims"]
        assert result["method"] == {"claim_1": "mixed", "claim_2": "mixed"}
        assert first["source_statement_ids"] == ["s_0", "s_1"]
        assert first["source_region_ids"] == ["r_0"]
        assert second["source_statement_ids"] == ["s_3", "s_4", "s_5"]
        assert second["source_region_ids"] == ["r_0", "r_1"]
        assert first["provenance_bulk"] == pytest.approx(3.0)
        assert set(result["recovery"]) == {"claim_1", "claim_2"}

    def test_canonical_ids_are_statements_from_supporters(self, corpus):
        result = reconstruct_provenance(
            [_mapper_claim("claim_1", [1, 2]), _mapper_claim("claim_2", [1, 2])],
            corpus["statements"],
            corpus["paragraphs"],
            corpus["regions"],
            claim_vectors=corpus["claim_vectors"],
            statement_vectors=corpus["statement_vectors"],
            paragraph_vectors=corpus["paragraph_vectors"],
            model_count=3,
        )
        known = {s["id"] for s in corpus["statements"]}
        for claim in result["claims"]:
            assert set(claim["source_statement_ids"]) <= known
            assert all(corpus["models"][sid] in claim["supporters"] for sid in claim["source_statement_ids"])

    def test_similarity_fallback(self, corpus):
        result = reconstruct_provenance(
            [_mapper_claim("claim_1", [3])],
            corpus["statements"],
            corpus["paragraphs"],
            corpus["regions"],
            claim_vectors={"claim_1": angle_vector(0)},
            statement_vectors=corpus["statement_vectors"],
            paragraph_vectors=corpus["paragraph_vectors"],
            model_count=3,
        )
        assert result["method"]["claim_1"] == "similarity"
        assert result["claims"][0]["source_statement_ids"] == ["s_2"]

    def test_no_vectors(self, corpus):
        result = reconstruct_provenance(
            [_mapper_claim("claim_1", [1])],
            corpus["statements"],
            corpus["paragraphs"],
            corpus["regions"],
            claim_vectors={},
            statement_vectors={},
            paragraph_vectors={},
            model_count=3,
        )
        assert result["method"]["claim_1"] == "none"
        assert result["claims"][0]["source_statement_ids"] == []
        assert result["mixed"] == {}

    def test_match_by_paragraph_when_statements_lack_vectors(self, corpus):
        matched = match_by_similarity(
            angle_vector(0),
            corpus["statements"],
            corpus["paragraphs"],
            {},
            corpus["paragraph_vectors"],
        )
        # p_0 and p_1 clear the paragraph threshold, p_2 does not
        assert matched == ["s_0", "s_1", "s_2", "s_3"]
