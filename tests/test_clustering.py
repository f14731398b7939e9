"""Tests for clustering.engine: agglomerative paragraph clustering."""

from __future__ import annotations

import pytest
from conftest import angle_vector

import claim_fusion.clustering.engine as engine
from claim_fusion.clustering.engine import (
    ClusteringConfig,
    build_clusters,
    detect_uncertainty,
    safe_build_clusters,
)
from claim_fusion.contracts import Paragraph, Stance


def _paragraph(
    i: int,
    *,
    stance: Stance = Stance.ASSERTIVE,
    contested: bool = False,
    tension: bool = False,
    conditional: bool = False,
    text: str | None = None,
) -> Paragraph:
    return Paragraph(
        id=f"p_{i}",
        model_index=1,
        paragraph_index=i,
        statement_ids=[f"s_{i}"],
        dominant_stance=stance,
        contested=contested,
        confidence=0.5,
        signals={"sequence": False, "tension": tension, "conditional": conditional},
        statements=[],
        text=text if text is not None else f"paragraph {i}",
    )


class TestBuildClusters:
    def test_two_groups(self):
        paragraphs = [_paragraph(i) for i in range(6)]
        vectors = [angle_vector(a) for a in (0, 5, 10, 80, 85, 90)]
        clusters = build_clusters(paragraphs, vectors)
        assert [c["paragraph_ids"] for c in clusters] == [
            ["p_0", "p_1", "p_2"],
            ["p_3", "p_4", "p_5"],
        ]
        assert [c["id"] for c in clusters] == ["pc_0", "pc_1"]
        first = clusters[0]
        assert first["representative_paragraph_id"] == "p_1"
        assert first["statement_ids"] == ["s_0", "s_1", "s_2"]
        assert first["cohesion"] == pytest.approx(0.996195, abs=1e-6)
        assert first["uncertain"] is False

    def test_mutual_bonus_pulls_pair_under_threshold(self):
        paragraphs = [_paragraph(i) for i in range(3)]
        vectors = [angle_vector(a) for a in (0, 45.5, 180)]
        assert len(build_clusters(paragraphs, vectors)) == 3

        mutual = [{"source": "p_0", "target": "p_1", "similarity": 0.7, "rank": 1}]
        clusters = build_clusters(paragraphs, vectors, mutual_edges=mutual)
        assert sorted(len(c["paragraph_ids"]) for c in clusters) == [1, 2]

    def test_singletons_without_vectors(self):
        paragraphs = [_paragraph(i) for i in range(4)]
        clusters = build_clusters(paragraphs, None)
        assert len(clusters) == 4
        assert all(c["size"] == 1 and c["cohesion"] == 1.0 for c in clusters)

    def test_singletons_below_minimum(self):
        paragraphs = [_paragraph(0), _paragraph(1)]
        clusters = build_clusters(paragraphs, [angle_vector(0), angle_vector(1)])
        assert [c["paragraph_ids"] for c in clusters] == [["p_0"], ["p_1"]]

    def test_uncertain_clusters_sorted_first(self):
        paragraphs = [
            _paragraph(0),
            _paragraph(1),
            _paragraph(2, contested=True),
            _paragraph(3, contested=True),
        ]
        vectors = [angle_vector(a) for a in (0, 2, 88, 90)]
        clusters = build_clusters(paragraphs, vectors)
        assert clusters[0]["paragraph_ids"] == ["p_2", "p_3"]
        assert "high_contested_ratio" in clusters[0]["uncertainty_reasons"]
        assert clusters[1]["uncertain"] is False

    def test_representative_text_clipped(self):
        paragraphs = [_paragraph(i, text="x" * 900) for i in range(3)]
        clusters = build_clusters(paragraphs, None)
        assert clusters[0]["representative_text"].endswith("...")
        assert len(clusters[0]["representative_text"]) == 703

    def test_deterministic(self):
        paragraphs = [_paragraph(i) for i in range(6)]
        vectors = [angle_vector(a) for a in (0, 5, 10, 80, 85, 90)]
        assert build_clusters(paragraphs, vectors) == build_clusters(paragraphs, vectors)


class TestDetectUncertainty:
    def test_low_cohesion(self):
        assert detect_uncertainty([_paragraph(0), _paragraph(1)], 0.5, 0.5) == ["low_cohesion"]

    def test_dumbbell(self):
        members = [_paragraph(i) for i in range(4)]
        assert detect_uncertainty(members, 0.80, 0.65) == ["dumbbell_cluster"]

    def test_oversized(self):
        config = ClusteringConfig(max_cluster_size=2)
        members = [_paragraph(i) for i in range(3)]
        assert "oversized" in detect_uncertainty(members, 0.9, 0.9, config)

    def test_stance_diversity(self):
        members = [
            _paragraph(0, stance=Stance.ASSERTIVE),
            _paragraph(1, stance=Stance.PRESCRIPTIVE),
            _paragraph(2, stance=Stance.PREREQUISITE),
        ]
        assert detect_uncertainty(members, 0.9, 0.9) == ["stance_diversity"]

    def test_conflicting_signals(self):
        members = [_paragraph(0, tension=True), _paragraph(1, conditional=True)]
        assert detect_uncertainty(members, 0.9, 0.9) == ["conflicting_signals"]

    def test_clean(self):
        assert detect_uncertainty([_paragraph(0), _paragraph(1)], 0.9, 0.9) == []


class TestSafeBuildClusters:
    def test_failure_returns_empty(self, monkeypatch, capsys):
        def boom(*args, **kwargs):
            raise ValueError("bad vectors")

        monkeypatch.setattr(engine, "build_clusters", boom)
        assert safe_build_clusters([_paragraph(0)], None) == []
        assert "Clustering failed" in capsys.readouterr().err
