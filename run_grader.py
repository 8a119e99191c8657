#!/usr/bin/env python3
from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import List

from dotenv import load_dotenv

load_dotenv()

from gradewise import (
    CapabilityAdapter,
    DocumentPayload,
    GradingWorkflow,
    JsonReportRecorder,
    ValidationFailure,
    WorkflowState,
)
from gradewise.llm_client import LLMClient


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Extract questions from a paper and grade scanned student answer sheets."
    )
    parser.add_argument(
        "--paper",
        type=Path,
        required=True,
        help="Question paper document (PDF or image).",
    )
    parser.add_argument(
        "--student",
        type=Path,
        nargs="*",
        default=[],
        help="Scanned student answer sheet(s) to grade against the selected question.",
    )
    parser.add_argument(
        "--subject",
        type=str,
        default=None,
        help="Subject or course name, used as context for question extraction.",
    )
    parser.add_argument(
        "--question",
        type=str,
        default=None,
        help="ID of the question to grade (defaults to the first extracted question).",
    )
    parser.add_argument(
        "--score",
        type=int,
        default=None,
        help="Override the derived final score before saving.",
    )
    parser.add_argument(
        "--feedback",
        type=str,
        default=None,
        help="Override the generated final feedback before saving.",
    )
    parser.add_argument(
        "--output-dir",
        type=Path,
        default=Path("output"),
        help="Output directory for saved grades.",
    )
    parser.add_argument(
        "--model",
        type=str,
        default=None,
        help="Gemini model used for every capability (default: gemini-2.5-flash).",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Per-call timeout in seconds (default: 120).",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Log capability calls and state transitions.",
    )
    return parser.parse_args()


def print_questions(workflow: GradingWorkflow) -> None:
    for question in workflow.session.questions:
        keywords = ", ".join(question.rubric.keywords) or "-"
        print(f"  {question.id} ({question.max_marks:g} marks): {question.text}")
        print(f"      keywords: {keywords}")


async def run(args: argparse.Namespace) -> int:
    client = LLMClient(model=args.model, timeout=args.timeout)
    workflow = GradingWorkflow(
        CapabilityAdapter(client),
        recorder=JsonReportRecorder(args.output_dir),
        on_progress=lambda message: print(f"... {message}"),
    )

    session = await workflow.analyze_paper(DocumentPayload.from_path(args.paper), args.subject)
    if session.state is not WorkflowState.QUESTIONS_READY:
        print(f"[ERROR] {session.error.message}")
        return 1

    print(f"[OK] Found {len(session.questions)} question(s):")
    print_questions(workflow)

    question_id = args.question or session.questions[0].id
    try:
        workflow.select_question(question_id)
    except ValidationFailure as e:
        print(f"[ERROR] {e}")
        return 1

    failures = 0
    student_paths: List[Path] = list(args.student)
    for path in student_paths:
        session = await workflow.grade(DocumentPayload.from_path(path))
        if session.state is not WorkflowState.REVIEWING:
            failures += 1
            print(f"[ERROR] {path.name}: {session.error.message}")
            continue

        try:
            session = workflow.edit_grade(score=args.score, feedback=args.feedback)
        except ValidationFailure as e:
            print(f"[WARN] {path.name}: override ignored, {e}")
        print(
            f"[OK] {path.name}: {session.final_score}/{session.active_question.max_marks:g} "
            f"(similarity {session.similarity_score:.2f})"
        )
        print(f"      {session.final_feedback}")
        workflow.save()
        # Saving clears the active question; keep grading the same one.
        workflow.select_question(question_id)

    if student_paths:
        print(f"[DONE] Grades written to {args.output_dir}")
    return 1 if failures else 0


def main() -> None:
    args = parse_args()
    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    sys.exit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()
