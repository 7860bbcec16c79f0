"""Golden test case fixtures stored as JSON lines."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, List

from priorauth_eval.evaluator.models import TestCase

logger = logging.getLogger(__name__)

DEFAULT_FIXTURES_PATH = Path(__file__).resolve().parents[3] / "fixtures" / "golden_cases.jsonl"


def load_jsonl(path: Path) -> List[Dict[str, Any]]:
    records: List[Dict[str, Any]] = []
    try:
        with path.open("r", encoding="utf-8") as handle:
            for line in handle:
                line = line.strip()
                if not line:
                    continue
                try:
                    records.append(json.loads(line))
                except json.JSONDecodeError as exc:
                    logger.warning("Skipping invalid JSON line in %s: %s", path, exc)
    except FileNotFoundError:
        logger.warning("Fixture file not found: %s", path)
    return records


def load_test_cases(path: Path) -> List[TestCase]:
    cases: List[TestCase] = []
    for record in load_jsonl(path):
        if not isinstance(record, dict) or not record.get("test_case_id"):
            logger.warning("Skipping fixture without test_case_id in %s", path)
            continue
        cases.append(TestCase.from_record(record))
    return cases
