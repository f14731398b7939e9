"""Tests for geometry.query_relevance."""

from __future__ import annotations

import pytest
from conftest import make_statement

from claim_fusion.contracts import Paragraph, Stance
from claim_fusion.geometry.query_relevance import compute_query_relevance
from claim_fusion.geometry.substrate import build_substrate


def _paragraph(pid: str, statement_ids: list[str]) -> Paragraph:
    return Paragraph(
        id=pid,
        model_index=1,
        paragraph_index=int(pid.split("_")[1]),
        statement_ids=statement_ids,
        dominant_stance=Stance.ASSERTIVE,
        contested=False,
        confidence=0.5,
        signals={"sequence": False, "tension": False, "conditional": False},
        statements=[],
        text="",
    )


@pytest.fixture
def setup():
    statements = [make_statement(f"s_{i}") for i in range(4)]
    paragraphs = [
        _paragraph("p_0", ["s_0", "s_1"]),
        _paragraph("p_1", ["s_2"]),
        _paragraph("p_2", ["s_3"]),
    ]
    substrate = build_substrate(paragraphs, None)
    return statements, paragraphs, substrate


class TestQueryRelevance:
    def test_statement_vector_preferred(self, setup):
        statements, paragraphs, substrate = setup
        out = compute_query_relevance(
            [1.0, 0.0],
            statements,
            paragraphs,
            substrate,
            statement_vectors={"s_0": [0.0, 1.0]},
            paragraph_vectors={"p_0": [1.0, 0.0]},
        )
        assert out["s_0"]["embedding_source"] == "statement"
        assert out["s_0"]["query_similarity"] == pytest.approx(0.0)
        assert out["s_0"]["query_similarity_normalized"] == pytest.approx(0.5)
        assert out["s_0"]["paragraph_sim"] == pytest.approx(1.0)

    def test_paragraph_fallback(self, setup):
        statements, paragraphs, substrate = setup
        out = compute_query_relevance(
            [1.0, 0.0], statements, paragraphs, substrate, paragraph_vectors={"p_0": [1.0, 0.0]}
        )
        assert out["s_1"]["embedding_source"] == "paragraph"
        assert out["s_1"]["query_similarity"] == pytest.approx(1.0)

    def test_raw_cosine_can_be_negative(self, setup):
        statements, paragraphs, substrate = setup
        out = compute_query_relevance(
            [1.0, 0.0], statements, paragraphs, substrate, statement_vectors={"s_2": [-1.0, 0.0]}
        )
        assert out["s_2"]["query_similarity"] == pytest.approx(-1.0)
        assert out["s_2"]["query_similarity_normalized"] == pytest.approx(0.0)

    def test_no_query_vector(self, setup):
        statements, paragraphs, substrate = setup
        out = compute_query_relevance(None, statements, paragraphs, substrate)
        assert set(out) == {"s_0", "s_1", "s_2", "s_3"}
        assert all(r["embedding_source"] == "none" for r in out.values())
        # Uniform degree: every statement reads as fully recusant
        assert all(r["recusant"] == 1.0 for r in out.values())
