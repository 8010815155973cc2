from __future__ import annotations

import argparse
import json
import logging
from dataclasses import replace
from pathlib import Path
from typing import Any, Dict, List, Optional

from core.utils import write_json
from pipelines.evidence_pipeline import EvidenceReviewConfig, EvidenceReviewPipeline
from stores.paper_store import JsonPaperStore

DEFAULT_STORE_PATH = Path("papers.json")


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Answer research questions from a JSON paper library and re-review its papers."
    )
    parser.add_argument(
        "--store",
        type=Path,
        default=DEFAULT_STORE_PATH,
        help='JSON document of the form {"papers": [...]} (default: %(default)s).',
    )
    parser.add_argument(
        "--question",
        action="append",
        default=[],
        help="Research question to answer. Repeat to answer several.",
    )
    parser.add_argument(
        "--rereview",
        action="store_true",
        help="Parse missing sections and generate tags for untagged papers before answering.",
    )
    parser.add_argument(
        "--no-sections",
        action="store_true",
        help="Skip section parsing during --rereview.",
    )
    parser.add_argument(
        "--no-tags",
        action="store_true",
        help="Skip tag generation during --rereview.",
    )
    parser.add_argument(
        "--model",
        default=None,
        help="Model to use for extraction and tagging (default: EVIDENCE_MODEL or gpt-4.1).",
    )
    parser.add_argument(
        "--offline",
        action="store_true",
        help="Never call the model; use the deterministic fallbacks only.",
    )
    parser.add_argument(
        "--max-workers",
        type=int,
        default=None,
        help="Parallel extraction workers (default: EVIDENCE_MAX_WORKERS or 4).",
    )
    parser.add_argument(
        "--output",
        type=Path,
        default=None,
        help="Write results as JSON to this path instead of stdout.",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging.")
    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> EvidenceReviewConfig:
    config = EvidenceReviewConfig.from_env()
    overrides: Dict[str, Any] = {}
    if args.model:
        overrides["model"] = args.model
    if args.max_workers is not None:
        overrides["max_workers"] = args.max_workers
    if args.offline:
        overrides["use_model"] = False
    return replace(config, **overrides) if overrides else config


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if not args.question and not args.rereview:
        print("Nothing to do: pass --question and/or --rereview.")
        return 2

    store_path = args.store.expanduser().resolve()
    if not store_path.exists():
        print(f"Paper store does not exist: {store_path}")
        return 1
    pipeline = EvidenceReviewPipeline(JsonPaperStore(store_path), build_config(args))

    results: Dict[str, Any] = {}
    if args.rereview:
        report = pipeline.rereview_all_papers(
            analyze_full_text=not args.no_sections,
            generate_tags=not args.no_tags,
        )
        print(f"Re-reviewed {report.processed} paper(s); {report.failed} failed.")
        results["rereview"] = report.to_dict()

    answers = []
    for question in args.question:
        answer = pipeline.answer_question(question)
        print(f"\n=== {question} ===")
        print(f"Status: {answer.status.value} ({len(answer.findings)} findings, confidence {answer.synthesis.confidence:.2f})")
        print(answer.synthesis.summary)
        for gap in answer.synthesis.gaps:
            print(f"  gap: {gap}")
        answers.append(answer.to_dict())
    if answers:
        results["answers"] = answers

    if args.output:
        write_json(args.output.expanduser().resolve(), results)
        print(f"\nResults written to {args.output}")
    else:
        print(json.dumps(results, indent=2))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
