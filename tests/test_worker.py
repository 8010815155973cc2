from __future__ import annotations

from pathlib import Path

import pytest

from pipelines.evidence_pipeline import EvidenceReviewConfig, EvidenceReviewPipeline
from worker.worker import _build_config, execute_job


def test_build_config_overlays_job_settings():
    base = EvidenceReviewConfig(model="gpt-4.1", max_workers=2)
    config = _build_config(
        {"config": {"max_workers": 6, "raw_response_dir": "raw", "question": "ignored"}}, base=base
    )
    assert config.model == "gpt-4.1"
    assert config.max_workers == 6
    assert config.raw_response_dir == Path("raw").resolve()


def test_execute_question_and_rereview_jobs(store):
    pipeline = EvidenceReviewPipeline(store, EvidenceReviewConfig(use_model=False))
    answer = execute_job(pipeline, {"job_type": "answer_question", "question": "Is chronic fatigue linked to sleep?"})
    assert answer["status"] == "unanswered"
    assert answer["paper_count"] == 2

    report = execute_job(pipeline, {"job_type": "rereview", "config": {"generate_tags": False}})
    assert report["processed"] == 3
    assert report["tagged"] == 0


@pytest.mark.parametrize("job", [{"job_type": "answer_question"}, {"job_type": "translate"}])
def test_bad_jobs_raise(store, job):
    pipeline = EvidenceReviewPipeline(store, EvidenceReviewConfig(use_model=False))
    with pytest.raises(ValueError):
        execute_job(pipeline, job)
