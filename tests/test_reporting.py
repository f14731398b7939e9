"""Tests for reporting: artifact assembly, JSON export, Markdown rendering."""

from __future__ import annotations

import json

import yaml
from conftest import make_statement

from claim_fusion.contracts import ErrorType, Fate, ProviderStatus, Stance
from claim_fusion.provenance.reconstruct import new_claim
from claim_fusion.reporting.export import artifact_to_json, build_artifact, export_artifact
from claim_fusion.reporting.renderer import render_report


def _claim(cid: str, label: str, **fields):
    claim = new_claim({"id": cid, "label": label, "text": f"Why {label}.", "supporters": [1, 2], "challenges": None}, 2)
    claim.update(fields)
    return claim


def _state(**extra) -> dict:
    state = {
        "query": "Which database?",
        "thread_id": "turn-test",
        "model_count": 2,
        "provider_texts": [
            {"provider_id": "claude", "model_index": 1, "text": "Use Postgres. " * 60},
            {"provider_id": "chatgpt", "model_index": 2, "text": "Use SQLite."},
        ],
        "mapper_output": {"status": "ok", "narrative": "Postgres wins.", "claims": []},
        "statements": [make_statement("s_0", stance=Stance.PRESCRIPTIVE)],
        "claims": [
            _claim("claim_1", "Use Postgres", source_statement_ids=["s_0"], is_keystone=True, tier=0),
            _claim("claim_2", "Use SQLite", challenges="claim_1", source_region_ids=["r_0"], tier=1),
        ],
        "claim_graph": {
            "tiers": [
                {"index": 0, "claim_ids": ["claim_1"], "is_foundation": True, "conditional_ids": []},
                {"index": 1, "claim_ids": ["claim_2"], "is_foundation": False, "conditional_ids": []},
            ],
            "forcing_points": [
                {
                    "id": "fp_0",
                    "kind": "conflict",
                    "question": '"Use Postgres" or "Use SQLite"?',
                    "claim_ids": ["claim_1", "claim_2"],
                    "statement_ids": ["s_0"],
                    "tier": 0,
                    "source_id": "claim_1->claim_2",
                }
            ],
            "conflict_components": [],
        },
        "substrate_summary": {
            "node_count": 4,
            "knn_edge_count": 6,
            "mutual_edge_count": 2,
            "strong_edge_count": 1,
            "component_count": 2,
            "basin_status": "ok",
            "health": "usable",
            "discrimination_range": 0.31,
            "effective_threshold": 0.62,
            "threshold_source": "valley",
            "degenerate": False,
        },
    }
    state.update(extra)
    return state


class TestBuildArtifact:
    def test_fields(self):
        artifact = build_artifact(_state())
        assert artifact["query"] == "Which database?"
        assert artifact["mapper_status"] == "ok"
        assert artifact["narrative"] == "Postgres wins."
        assert [c["id"] for c in artifact["claims"]] == ["claim_1", "claim_2"]
        assert len(artifact["tiers"]) == 2
        assert artifact["blast_radius"] is None
        assert artifact["completeness"] is None
        assert artifact["survey_questions"] == []

    def test_minimal_state(self):
        artifact = build_artifact({"query": "q"})
        assert artifact["mapper_status"] == "parse_failed"
        assert artifact["claims"] == []
        assert artifact["substrate_summary"] == {}

    def test_json_uses_enum_values(self):
        data = json.loads(artifact_to_json(build_artifact(_state())))
        assert data["statements"][0]["stance"] == "prescriptive"
        assert data["claims"][1]["challenges"] == "claim_1"

    def test_json_handles_sets(self):
        data = json.loads(artifact_to_json({"owners": {"b", "a"}, "fate": Fate.ORPHAN}))
        assert data == {"owners": ["a", "b"], "fate": "orphan"}


class TestExportArtifact:
    def test_writes_file(self, tmp_path):
        path = tmp_path / "out" / "turn.json"
        assert export_artifact(build_artifact(_state()), path) is True
        assert json.loads(path.read_text(encoding="utf-8"))["query"] == "Which database?"

    def test_failure_returns_false(self, tmp_path, capsys):
        blocker = tmp_path / "file"
        blocker.write_text("x", encoding="utf-8")
        assert export_artifact(build_artifact(_state()), blocker / "turn.json") is False
        assert "artifact export failed" in capsys.readouterr().err


class TestRenderReport:
    def _frontmatter(self, report: str) -> dict:
        _, block, _ = report.split("---\n", 2)
        return yaml.safe_load(block)

    def test_frontmatter(self):
        meta = self._frontmatter(render_report(_state()))
        assert meta["title"] == "Claim Map: Which database?"
        assert meta["models"] == 2
        assert meta["claims"] == 2
        assert meta["mapper_status"] == "ok"
        assert meta["substrate_health"] == "usable"
        assert meta["degenerate_substrate"] is False

    def test_sections(self):
        report = render_report(_state())
        assert "## Synthesis\n\nPostgres wins." in report
        assert "| claim_1 | Use Postgres | 1, 2 | 100% | 0 | - | 1 |" in report
        assert "- **Structure**: keystone" in report
        assert "- **Challenges**: claim_1" in report
        assert "- **Regions**: r_0" in report
        assert "- **Tier 1** (conflict): claim_2" in report
        assert '- **fp_0** [conflict] "Use Postgres" or "Use SQLite"? (claim_1, claim_2)' in report
        assert "- **Basin inversion**: ok (health usable, D=0.310)" in report
        assert "- **Threshold**: 0.620 (valley)" in report

    def test_blast_radius_column_and_skip_reason(self):
        blast = {
            "scores": [
                {"claim_id": "claim_1", "composite": 0.4567, "suppressed": False},
                {"claim_id": "claim_2", "composite": 0.1, "suppressed": True},
            ],
            "axes": [],
            "question_ceiling": 0,
            "skip_survey": True,
            "skip_reason": "no_high_blast_radius_axes",
            "meta": {},
        }
        report = render_report(_state(blast_radius=blast))
        assert "| 0 | 0.46 | 1 |" in report
        assert "| 1 | - | 0 |" in report
        assert "*No survey questions: no_high_blast_radius_axes.*" in report

    def test_survey_questions(self):
        questions = [{"axis_id": "axis_0", "claim_id": "claim_1", "question": "Do you run servers?"}]
        report = render_report(_state(survey_questions=questions))
        assert "## Survey\n\n- Do you run servers? *(axis axis_0, claim_1)*" in report

    def test_parse_failure_shows_raw_answers(self):
        state = _state(mapper_output={"status": "parse_failed", "narrative": ""}, claims=[])
        report = render_report(state)
        assert "## Provider Answers" in report
        assert "### Model 1 (claude)" in report
        assert "### Model 2 (chatgpt)\n\nUse SQLite." in report
        claude_block = report.split("### Model 1 (claude)\n\n")[1].split("\n")[0]
        assert claude_block.endswith("...")
        assert len(claude_block) <= 403

    def test_completeness_and_orphans(self):
        completeness = {
            "statements": {"total": 4, "in_claims": 2, "orphaned": 1, "unaddressed": 1, "noise": 0, "coverage_ratio": 0.5},
            "regions": {"total": 2, "attended": 1, "unattended": 1, "coverage_ratio": 0.5},
            "recovery": {
                "unaddressed_statements": [
                    {"statement_id": "s_3", "text": "Cost matters.", "model_index": 2, "query_similarity": 0.61}
                ],
                "unattended_region_previews": [],
            },
        }
        fates = {
            "s_0": {"statement_id": "s_0", "fate": Fate.ORPHAN, "signal_weight": 3},
        }
        report = render_report(_state(completeness=completeness, fates=fates))
        assert "- **Statements**: 2/4 in claims (50%); 1 orphaned, 1 unaddressed, 0 noise" in report
        assert "- **Regions**: 1/2 attended (50%)" in report
        assert "- [s_3] Cost matters. *(model 2, sim 0.61)*" in report
        assert "### High-Signal Orphans\n\n- [s_0] A statement." in report
        assert self._frontmatter(report)["statement_coverage"] == 0.5

    def test_alignment_alerts(self):
        alignment = {
            "region_coverages": [],
            "split_alerts": [
                {"claim_id": "claim_1", "claim_label": "Use Postgres", "region_ids": ["r_0", "r_2"], "max_inter_region_distance": 0.91}
            ],
            "merge_alerts": [
                {"claim_a": "claim_1", "claim_b": "claim_2", "label_a": "Use Postgres", "label_b": "Use SQLite", "similarity": 0.95}
            ],
            "global_coverage": 0.5,
            "unattended_region_ids": [],
        }
        report = render_report(_state(alignment=alignment))
        assert "- **Split**: Use Postgres spans r_0, r_2 (distance 0.91)" in report
        assert "- **Merge**: Use Postgres / Use SQLite (similarity 0.95)" in report

    def test_providers(self):
        dispatch = {
            "statuses": {
                "claude": ProviderStatus.COMPLETED,
                "chatgpt": ProviderStatus.COMPLETED,
                "gemini": ProviderStatus.SKIPPED,
            },
            "results": {
                "claude": {"text": "x"},
                "chatgpt": {"text": "y", "soft_error": {"message": "stream interrupted"}},
            },
            "errors": {},
            "skipped": {
                "gemini": {"error_type": ErrorType.CIRCUIT_OPEN, "message": "circuit open"},
            },
        }
        report = render_report(_state(dispatch_result=dispatch))
        assert "- **claude**: completed" in report
        assert "- **chatgpt**: completed (partial: stream interrupted)" in report
        assert "- **gemini**: skipped (circuit_open: circuit open)" in report

    def test_footer(self):
        report = render_report(_state())
        assert report.endswith("*2 model(s) | 1 statements | 2 claims | mapper ok*")
