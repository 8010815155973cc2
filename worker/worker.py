"""
Worker that polls Supabase for queued evidence-review jobs and runs the pipeline.
Requires env vars:
  SUPABASE_URL
  SUPABASE_SERVICE_ROLE_KEY
Optional:
  JOBS_POLL_INTERVAL (seconds, default 10)
  JOBS_BATCH_LIMIT (default 1)
  PAPERS_TABLE (default "papers")
  EVIDENCE_* (see EvidenceReviewConfig.from_env)

Job rows carry ``job_type`` ("answer_question" or "rereview") and an optional
``config`` object whose keys override EvidenceReviewConfig fields. Question
jobs also need ``question``.
"""

from __future__ import annotations

import logging
import os
import sys
import time
import traceback
from dataclasses import fields
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from supabase import Client, create_client

PROJECT_ROOT = Path(__file__).resolve().parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from pipelines.evidence_pipeline import EvidenceReviewConfig, EvidenceReviewPipeline  # noqa: E402
from stores.supabase_store import SupabasePaperStore  # noqa: E402

logger = logging.getLogger("worker")

POLL_INTERVAL = int(os.getenv("JOBS_POLL_INTERVAL", "10"))
BATCH_LIMIT = int(os.getenv("JOBS_BATCH_LIMIT", "1"))
PAPERS_TABLE = os.getenv("PAPERS_TABLE", "papers")

JOB_TYPES = ("answer_question", "rereview")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _build_config(job: Dict[str, Any], base: Optional[EvidenceReviewConfig] = None) -> EvidenceReviewConfig:
    base = base or EvidenceReviewConfig.from_env()
    cfg = job.get("config") or {}
    kwargs: Dict[str, Any] = {}
    for field in fields(EvidenceReviewConfig):
        name = field.name
        if name in cfg:
            val = cfg[name]
            if name == "raw_response_dir" and val is not None:
                val = Path(val).expanduser().resolve()
            kwargs[name] = val
        else:
            kwargs[name] = getattr(base, name)
    return EvidenceReviewConfig(**kwargs)


def _post_event(sb: Client, job_id: str, event_type: str, message: str, data: Optional[Dict[str, Any]] = None) -> None:
    try:
        sb.table("job_events").insert(
            {"job_id": job_id, "event_type": event_type, "message": message, "data": data or {}, "created_at": _utcnow().isoformat()}
        ).execute()
    except Exception:
        logger.exception("Could not post %s event for job %s", event_type, job_id)


def _update_job(sb: Client, job_id: str, payload: Dict[str, Any]) -> None:
    payload["updated_at"] = _utcnow().isoformat()
    sb.table("jobs").update(payload).eq("id", job_id).execute()


def _claim_next_job(sb: Client) -> Optional[Dict[str, Any]]:
    res = (
        sb.table("jobs")
        .select("*")
        .eq("status", "queued")
        .in_("job_type", list(JOB_TYPES))
        .order("created_at", desc=False)
        .limit(BATCH_LIMIT)
        .execute()
    )
    jobs = res.data or []
    for job in jobs:
        job_id = job["id"]
        updated = sb.table("jobs").update({"status": "running", "started_at": _utcnow().isoformat()}).eq("id", job_id).eq(
            "status", "queued"
        ).execute()
        if updated.data:
            return job
    return None


def execute_job(pipeline: EvidenceReviewPipeline, job: Dict[str, Any]) -> Dict[str, Any]:
    job_type = job.get("job_type")
    if job_type == "answer_question":
        question = (job.get("question") or (job.get("config") or {}).get("question") or "").strip()
        if not question:
            raise ValueError("answer_question job is missing 'question'.")
        return pipeline.answer_question(question, question_id=job.get("question_id")).to_dict()
    if job_type == "rereview":
        cfg = job.get("config") or {}
        report = pipeline.rereview_all_papers(
            analyze_full_text=bool(cfg.get("analyze_full_text", True)),
            generate_tags=bool(cfg.get("generate_tags", True)),
        )
        return report.to_dict()
    raise ValueError(f"Unknown job_type: {job_type!r}")


def run_job(sb: Client, job: Dict[str, Any]) -> None:
    job_id = job["id"]
    title = job.get("title") or f"{job.get('job_type', 'evidence')} job"
    _post_event(sb, job_id, "status", f"Starting {title}")
    try:
        config = _build_config(job)
        pipeline = EvidenceReviewPipeline(SupabasePaperStore(sb, table=PAPERS_TABLE), config)
        result = execute_job(pipeline, job)
        _update_job(
            sb,
            job_id,
            {"status": "completed", "finished_at": _utcnow().isoformat(), "error": None, "result": result},
        )
        _post_event(sb, job_id, "status", f"Completed {title}")
    except Exception as exc:
        err_text = f"{type(exc).__name__}: {exc}"
        logger.exception("Job %s failed", job_id)
        _post_event(sb, job_id, "log", f"Job failed: {err_text}", {"traceback": traceback.format_exc()})
        _update_job(sb, job_id, {"status": "failed", "finished_at": _utcnow().isoformat(), "error": err_text})


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    url = os.getenv("SUPABASE_URL")
    key = os.getenv("SUPABASE_SERVICE_ROLE_KEY")
    if not url or not key:
        print("Missing SUPABASE_URL or SUPABASE_SERVICE_ROLE_KEY", file=sys.stderr)
        sys.exit(1)

    sb = create_client(url, key)
    print("Worker started; polling for jobs...", flush=True)
    while True:
        job = _claim_next_job(sb)
        if not job:
            time.sleep(POLL_INTERVAL)
            continue
        run_job(sb, job)


if __name__ == "__main__":
    main()
