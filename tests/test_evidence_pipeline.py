from __future__ import annotations

from pathlib import Path

import pytest

from conftest import RoutingTransport, extraction_reply, make_invoker
from core.errors import ConfigurationError, TransportError
from core.models import Paper, QuestionStatus, StudyType, TagSource
from evidence.synthesis import LOW_CONSISTENCY, NO_EVIDENCE_SUMMARY
from pipelines.evidence_pipeline import (
    EvidenceReviewConfig,
    EvidenceReviewPipeline,
    extract_keywords,
    question_status,
)
from stores.paper_store import InMemoryPaperStore

QUESTION = "Is natural killer cell activity reduced in chronic fatigue?"

NK_REPLY = extraction_reply(
    "This study found reduced NK cell cytotoxicity",
    evidence="cytotoxicity decreased",
    study_type="observational",
    sample_size=40,
)
SLEEP_REPLY = extraction_reply("This study found fragmented sleep in patients", study_type="other", sample_size=25)


def pipeline_with(store, routes, **config):
    transport = RoutingTransport(routes)
    config.setdefault("max_workers", 4)
    return EvidenceReviewPipeline(store, EvidenceReviewConfig(**config), make_invoker(transport)), transport


def test_keywords_drop_stop_words_and_punctuation():
    assert extract_keywords("What does the NK cell do in fatigue?") == ["cell", "fatigue"]


def test_search_papers_matches_title_and_abstract(store):
    pipeline = EvidenceReviewPipeline(store, EvidenceReviewConfig(use_model=False))
    assert [p.id for p in pipeline.search_papers(QUESTION)] == ["p1", "p2"]
    assert pipeline.search_papers("why is it so?") == []


def test_answer_question_offline_is_unanswered(store):
    pipeline = EvidenceReviewPipeline(store, EvidenceReviewConfig(use_model=False))
    answer = pipeline.answer_question(QUESTION, question_id="q-1")
    assert answer.question_id == "q-1"
    assert answer.status == QuestionStatus.UNANSWERED
    assert answer.paper_count == 2
    assert answer.findings == []
    assert answer.synthesis.summary == NO_EVIDENCE_SUMMARY


def test_answer_question_builds_findings_in_paper_order(store):
    pipeline, transport = pipeline_with(store, {"Natural killer": NK_REPLY, "Sleep architecture": SLEEP_REPLY})
    answer = pipeline.answer_question(QUESTION)
    assert len(transport.calls) == 2
    assert [f.supporting_papers for f in answer.findings] == [["p1"], ["p2"]]
    nk, sleep = answer.findings
    assert (nk.peer_reviewed_count, nk.preprint_count) == (1, 0)
    assert (sleep.peer_reviewed_count, sleep.preprint_count) == (0, 1)
    assert nk.study_types == [StudyType.OBSERVATIONAL]
    assert nk.sample_sizes == [40]
    assert nk.quantitative_result == "cytotoxicity decreased"
    assert all(f.question_id == answer.question_id for f in answer.findings)
    assert answer.status == QuestionStatus.PARTIAL
    assert answer.synthesis.summary.startswith("Based on 2 papers, evidence indicates multiple findings")
    assert "1 preprint(s) not yet peer-reviewed" in answer.synthesis.limitations


def test_non_conservative_finding_is_dropped(store):
    banned = extraction_reply("Sleep is always fragmented")
    pipeline, _ = pipeline_with(store, {"Natural killer": NK_REPLY, "Sleep architecture": banned})
    answer = pipeline.answer_question(QUESTION)
    assert [f.supporting_papers for f in answer.findings] == [["p1"]]


def test_one_failing_paper_does_not_block_others(store):
    pipeline, _ = pipeline_with(
        store, {"Natural killer": TransportError("timed out"), "Sleep architecture": SLEEP_REPLY}
    )
    answer = pipeline.answer_question(QUESTION)
    assert [f.supporting_papers for f in answer.findings] == [["p2"]]


@pytest.mark.parametrize("max_workers", [1, 4])
def test_unexpected_extraction_error_is_isolated(store, caplog, max_workers):
    pipeline, _ = pipeline_with(
        store,
        {"Natural killer": RuntimeError("decoder crashed"), "Sleep architecture": SLEEP_REPLY},
        max_workers=max_workers,
    )
    answer = pipeline.answer_question(QUESTION)
    assert [f.supporting_papers for f in answer.findings] == [["p2"]]
    assert "p1 failed" in caplog.text


def test_rejected_credentials_take_the_run_offline(store):
    pipeline, transport = pipeline_with(
        store, {"Natural killer": ConfigurationError("401"), "Sleep architecture": SLEEP_REPLY}, max_workers=1
    )
    answer = pipeline.answer_question(QUESTION)
    assert len(transport.calls) == 1
    assert answer.findings == []
    assert not pipeline.invoker.available


def test_contradicting_findings_are_flagged():
    papers = [
        Paper(id="a", title="Cortisol study one", abstract="Morning cortisol in patients."),
        Paper(id="b", title="Cortisol study two", abstract="Morning cortisol in patients."),
    ]
    higher = extraction_reply("This study found morning cortisol levels in patients", evidence="cortisol increased")
    lower = extraction_reply("This study found morning cortisol levels in patients", evidence="cortisol decreased")
    pipeline, _ = pipeline_with(InMemoryPaperStore(papers), {"study one": higher, "study two": lower})
    answer = pipeline.answer_question("Is morning cortisol altered?")
    assert len(answer.contradictions) == 1
    assert all(f.has_contradiction for f in answer.findings)
    assert answer.synthesis.findings[0].consistency.value == "low"
    assert LOW_CONSISTENCY in answer.synthesis.limitations


def test_update_question_with_new_papers(store):
    routes = {
        "Natural killer": NK_REPLY,
        "Sleep architecture": SLEEP_REPLY,
        "NK cells in long covid": extraction_reply("This study found reduced NK cell counts"),
    }
    pipeline, transport = pipeline_with(store, routes)
    answer = pipeline.answer_question(QUESTION)
    new_paper = Paper(id="p4", title="NK cells in long covid", abstract="NK counts were reduced.")

    updated = pipeline.update_question_with_new_papers(answer, [store.get("p1"), new_paper])
    assert len(transport.calls) == 3
    assert [f.supporting_papers for f in updated.findings] == [["p1"], ["p2"], ["p4"]]
    assert updated.paper_count == 3
    assert updated.question_id == answer.question_id
    assert len(answer.findings) == 2


def test_find_relevant_questions(sample_papers):
    pipeline = EvidenceReviewPipeline(InMemoryPaperStore(), EvidenceReviewConfig(use_model=False))
    questions = ["Are cytokines elevated after exercise?", "Does sleep quality change?"]
    assert pipeline.find_relevant_questions(sample_papers[2], questions) == questions[:1]


def test_question_status_thresholds(store):
    pipeline, _ = pipeline_with(store, {})
    findings = pipeline.extract_findings("q", QUESTION, [])
    assert question_status(findings, 0.9) == QuestionStatus.UNANSWERED
    assert question_status(["f"] * 2, 0.9) == QuestionStatus.PARTIAL
    assert question_status(["f"] * 3, 0.69) == QuestionStatus.PARTIAL
    assert question_status(["f"] * 3, 0.7) == QuestionStatus.ANSWERED


def test_rereview_sections_and_heuristic_tags(store):
    pipeline = EvidenceReviewPipeline(store, EvidenceReviewConfig(use_model=False, rereview_batch_size=2))
    report = pipeline.rereview_all_papers()
    assert (report.processed, report.failed) == (3, 0)
    assert report.sectioned == 1
    assert report.tagged == 2

    p1 = store.get("p1")
    assert set(p1.sections) == {"abstract", "methods", "results", "discussion"}
    assert p1.tags == ["Immunology", "NK cells"]
    p2 = store.get("p2")
    assert p2.tags and all(t.source == TagSource.HEURISTIC for t in p2.auto_tags)
    assert p2.tags == [t.tag for t in p2.auto_tags]
    assert len(p2.tags) <= pipeline.config.top_n_tags


def test_rereview_flags_can_be_disabled(store):
    pipeline = EvidenceReviewPipeline(store, EvidenceReviewConfig(use_model=False))
    report = pipeline.rereview_all_papers(analyze_full_text=False, generate_tags=False)
    assert report.processed == 3
    assert store.get("p1").sections is None
    assert store.get("p2").tags == []


class FlakyStore(InMemoryPaperStore):
    def update(self, paper_id, fields):
        if paper_id == "p2":
            raise RuntimeError("write failed")
        return super().update(paper_id, fields)


def test_rereview_continues_after_a_failure(sample_papers):
    store = FlakyStore(sample_papers)
    pipeline = EvidenceReviewPipeline(store, EvidenceReviewConfig(use_model=False, rereview_batch_size=1))
    report = pipeline.rereview_all_papers()
    assert (report.processed, report.failed) == (2, 1)
    assert report.failed_ids == ["p2"]
    assert store.get("p3").tags


def test_config_from_env():
    config = EvidenceReviewConfig.from_env(
        {
            "EVIDENCE_MODEL": "gpt-5",
            "EVIDENCE_MAX_WORKERS": "8",
            "EVIDENCE_EXTRACTION_TIMEOUT": "12.5",
            "EVIDENCE_USE_MODEL": "false",
            "EVIDENCE_MODEL_LIMITS": "gpt-5=30000, gpt-4.1=10000",
            "EVIDENCE_RAW_RESPONSE_DIR": "/tmp/raw",
            "UNRELATED": "x",
        }
    )
    assert config.model == "gpt-5"
    assert config.max_workers == 8
    assert config.extraction_timeout == 12.5
    assert config.use_model is False
    assert config.model_limits == {"gpt-5": 30000, "gpt-4.1": 10000}
    assert config.raw_response_dir == Path("/tmp/raw")
    assert config.top_n_tags == EvidenceReviewConfig().top_n_tags


def test_config_from_env_rejects_bad_limits():
    with pytest.raises(ValueError):
        EvidenceReviewConfig.from_env({"EVIDENCE_MODEL_LIMITS": "gpt-5"})
