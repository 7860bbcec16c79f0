"""Generate and score the letter for a single golden test case."""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, List, Optional

from priorauth_eval.config import EvaluatorConfig
from priorauth_eval.evaluator import metrics
from priorauth_eval.evaluator.judge import JudgeClient, JudgeVerdict
from priorauth_eval.evaluator.models import CaseFailure, CaseOutcome, CaseSuccess, TestCase
from priorauth_eval.evaluator.prompts import (
    GENERATION_SYSTEM_PROMPT,
    build_clinical_packet,
    build_generation_prompt,
    policy_criteria,
)
from priorauth_eval.evaluator.safety import run_safety_checks
from priorauth_eval.llm import LLMGenerationError, TextLLMClient

logger = logging.getLogger(__name__)


def _codes(profile: Dict[str, Any], key: str) -> List[Any]:
    value = profile.get(key)
    return list(value) if isinstance(value, list) else []


class CaseRunner:
    """Turn one test case into a ``CaseSuccess`` or a ``CaseFailure``."""

    def __init__(
        self,
        config: EvaluatorConfig,
        client: TextLLMClient,
        judge: Optional[JudgeClient] = None,
    ) -> None:
        self._config = config
        self._client = client
        self._judge = judge

    def run(self, test_case: TestCase) -> CaseOutcome:
        start = time.perf_counter()
        profile = test_case.patient_profile or {}

        try:
            prompt = build_generation_prompt(build_clinical_packet(profile), test_case.payer_id)
            reply = self._client.generate(prompt, system=GENERATION_SYSTEM_PROMPT)
        except LLMGenerationError as exc:
            return CaseFailure(
                test_case_id=test_case.test_case_id,
                error=str(exc),
                elapsed_ms=self._elapsed_ms(start),
                stage="generation",
            )
        except Exception as exc:  # noqa: BLE001
            logger.exception("Generation failed for %s", test_case.test_case_id)
            return CaseFailure(
                test_case_id=test_case.test_case_id,
                error=f"{type(exc).__name__}: {exc}",
                elapsed_ms=self._elapsed_ms(start),
                stage="generation",
            )

        generation_ms = self._elapsed_ms(start)
        logger.info("  Generated in %sms (%s chars)", generation_ms, len(reply.text))

        try:
            return self._score(test_case, reply.text, generation_ms)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Scoring failed for %s", test_case.test_case_id)
            return CaseFailure(
                test_case_id=test_case.test_case_id,
                error=str(exc),
                elapsed_ms=self._elapsed_ms(start),
                stage="scoring",
            )

    def _score(self, test_case: TestCase, letter_text: str, generation_ms: int) -> CaseSuccess:
        profile = test_case.patient_profile or {}
        criteria = policy_criteria(test_case.payer_id)
        requested_cpt = _codes(profile, "cpt_codes")

        coverage = metrics.evaluate_criteria_coverage(letter_text, criteria)
        accuracy = metrics.evaluate_clinical_accuracy(letter_text, _codes(profile, "icd10_codes"), requested_cpt)
        format_result = metrics.evaluate_format_compliance(letter_text, test_case.expected_sections)
        completeness = metrics.evaluate_completeness(letter_text)
        logger.info(
            "  Coverage: %.0f%% | Accuracy: %.0f%% | Format: %.0f%% | Complete: %.0f%%",
            coverage.score * 100,
            accuracy.score * 100,
            format_result.score * 100,
            completeness.score * 100,
        )

        verdict: Optional[JudgeVerdict] = None
        if self._judge is not None:
            verdict = self._judge.judge(letter_text, criteria)
            if verdict.succeeded:
                logger.info("  Judge: %s/10", verdict.score)
            else:
                logger.info("  Judge: no score (%s)", verdict.reasoning[:120])

        safety = run_safety_checks(letter_text, profile, self._config.known_sources, requested_cpt)
        if not safety.passed:
            logger.info("  Safety: %s issue(s) found (%s)", len(safety.findings), safety.severity.value)

        return CaseSuccess(
            test_case_id=test_case.test_case_id,
            letter_text=letter_text,
            generation_time_ms=generation_ms,
            coverage=coverage,
            accuracy=accuracy,
            format=format_result,
            completeness=completeness,
            safety=safety,
            judge=verdict,
        )

    @staticmethod
    def _elapsed_ms(start: float) -> int:
        return int((time.perf_counter() - start) * 1000)
