"""Evaluation harness: run every active golden case and persist a scored run."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from priorauth_eval.config import EvaluatorConfig
from priorauth_eval.db import DatabaseManager
from priorauth_eval.evaluator.case_runner import CaseRunner
from priorauth_eval.evaluator.judge import JudgeClient
from priorauth_eval.evaluator.models import (
    CaseFailure,
    CaseOutcome,
    CaseSuccess,
    EvalResult,
    EvalRun,
    RunSummary,
)
from priorauth_eval.evaluator.safety import Severity
from priorauth_eval.evaluator.store import EvalStore, StoreError, generate_id
from priorauth_eval.llm import TextLLMClient

logger = logging.getLogger(__name__)

RUN_TYPE_AUTOMATED = "automated"


@dataclass
class RunReport:
    run_id: str
    run_name: str
    summary: RunSummary
    results: List[EvalResult] = field(default_factory=list)
    outcomes: List[CaseOutcome] = field(default_factory=list)


def build_result(run_id: str, outcome: CaseOutcome) -> EvalResult:
    """Map a case outcome onto the row stored for it."""
    result_id = generate_id("res")
    if isinstance(outcome, CaseFailure):
        return EvalResult(
            result_id=result_id,
            run_id=run_id,
            test_case_id=outcome.test_case_id,
            generated_output=outcome.marker,
            generation_time_ms=outcome.elapsed_ms,
        )

    verdict = outcome.judge
    judge_score: Optional[int] = None
    if verdict is not None and verdict.succeeded:
        judge_score = verdict.score
    return EvalResult(
        result_id=result_id,
        run_id=run_id,
        test_case_id=outcome.test_case_id,
        generated_output=outcome.letter_text,
        generation_time_ms=outcome.generation_time_ms,
        criteria_coverage_score=outcome.coverage.score,
        clinical_accuracy_score=outcome.accuracy.score,
        format_compliance_score=outcome.format.score,
        completeness_score=outcome.completeness.score,
        llm_judge_score=judge_score,
        llm_judge_reasoning=verdict.reasoning if verdict is not None else None,
        llm_judge_model=verdict.model if verdict is not None else None,
    )


def _mean(values: Sequence[float]) -> float:
    # Divisor floors at 1 so an empty column averages to 0.
    return sum(values) / (len(values) or 1)


def summarize(
    total_cases: int,
    results: Sequence[EvalResult],
    *,
    lost_cases: int = 0,
    safety_critical_cases: int = 0,
) -> RunSummary:
    """Aggregate stored rows; averages only cover rows that carry scores."""
    scored = [result for result in results if result.scored]
    judge_scores = [result.llm_judge_score for result in scored if result.llm_judge_score is not None]
    return RunSummary(
        total_cases=total_cases,
        completed_cases=len(results),
        scored_cases=len(scored),
        failed_cases=len(results) - len(scored),
        lost_cases=lost_cases,
        safety_critical_cases=safety_critical_cases,
        avg_criteria_coverage=_mean([result.criteria_coverage_score for result in scored]),
        avg_clinical_accuracy=_mean([result.clinical_accuracy_score for result in scored]),
        avg_format_compliance=_mean([result.format_compliance_score for result in scored]),
        avg_completeness=_mean([result.completeness_score for result in scored]),
        avg_llm_judge_score=_mean(judge_scores),
    )


class Evaluator:
    def __init__(
        self,
        config: EvaluatorConfig,
        *,
        store: Optional[EvalStore] = None,
        case_runner: Optional[CaseRunner] = None,
    ) -> None:
        self.config = config
        self._db: Optional[DatabaseManager] = None
        self._client: Optional[TextLLMClient] = None
        if store is None:
            self._db = DatabaseManager(config.database_url)
            store = EvalStore(self._db, config.schema)
        if case_runner is None:
            self._client = TextLLMClient(config)
            judge = JudgeClient(config, self._client) if config.judge_enabled else None
            case_runner = CaseRunner(config, self._client, judge)
        self._store = store
        self._case_runner = case_runner

    def run(self) -> Optional[RunReport]:
        """Evaluate all active cases; returns None when there is nothing to run."""
        run_name = self.config.resolved_run_name()
        logger.info("Starting evaluation run: %s", run_name)
        logger.info("Model: %s | LLM URL: %s", self.config.model, self.config.llm_url)

        test_cases = self._store.list_active_test_cases()
        logger.info("Found %s active test cases.", len(test_cases))
        if not test_cases:
            return None

        run = EvalRun(
            run_id=generate_id("run"),
            run_name=run_name,
            run_type=RUN_TYPE_AUTOMATED,
            model_id=self.config.model,
            config=self.config.snapshot(),
        )
        run_id = self._store.create_run(run)
        logger.info("Created run: %s", run_id)

        results: List[EvalResult] = []
        outcomes: List[CaseOutcome] = []
        lost_cases = 0
        safety_critical_cases = 0

        for test_case in test_cases:
            logger.info("--- %s: %s ---", test_case.test_case_id, test_case.case_name)
            outcome = self._case_runner.run(test_case)
            outcomes.append(outcome)
            if isinstance(outcome, CaseSuccess) and outcome.safety.severity is Severity.CRITICAL:
                safety_critical_cases += 1
            elif isinstance(outcome, CaseFailure):
                logger.error("  ERROR (%s): %s", outcome.stage, outcome.error)

            result = build_result(run_id, outcome)
            if self._persist(result, outcome):
                results.append(result)
            else:
                lost_cases += 1

        summary = summarize(
            len(test_cases),
            results,
            lost_cases=lost_cases,
            safety_critical_cases=safety_critical_cases,
        )
        # A failed summary write is fatal and propagates to the caller.
        self._store.complete_run(run_id, summary)
        logger.info("Run %s completed (%s/%s cases stored)", run_id, summary.completed_cases, summary.total_cases)
        return RunReport(run_id=run_id, run_name=run_name, summary=summary, results=results, outcomes=outcomes)

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
        if self._db is not None:
            self._db.close()

    def _persist(self, result: EvalResult, outcome: CaseOutcome) -> bool:
        try:
            self._store.insert_result(result)
        except StoreError as exc:
            logger.error("  Failed to store result for %s; case lost: %s", result.test_case_id, exc)
            return False

        if isinstance(outcome, CaseSuccess) and outcome.safety.findings:
            try:
                self._store.insert_safety_findings(result.result_id, outcome.safety)
            except StoreError as exc:
                logger.warning("  Failed to store safety findings for %s: %s", result.result_id, exc)
        logger.info("  Stored: %s", result.result_id)
        return True
