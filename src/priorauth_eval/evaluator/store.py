"""PostgreSQL persistence for test cases, runs, results and safety findings."""

from __future__ import annotations

import logging
import time
import uuid
from typing import Any, Dict, List

import psycopg
from psycopg import sql
from psycopg.types.json import Json

from priorauth_eval.db import DatabaseManager
from priorauth_eval.evaluator.models import (
    JUDGE_PASS_THRESHOLD,
    PASS_THRESHOLD,
    RUN_STATUS_COMPLETED,
    EvalResult,
    EvalRun,
    RunMetrics,
    RunSummary,
    TestCase,
)
from priorauth_eval.evaluator.safety import SafetyReport

logger = logging.getLogger(__name__)


class StoreError(RuntimeError):
    """Raised when a persistence call fails."""


def generate_id(prefix: str) -> str:
    return f"{prefix}-{int(time.time() * 1000)}-{uuid.uuid4().hex[:6]}"


class EvalStore:
    """Schema-qualified queries against the evaluation tables."""

    def __init__(self, db: DatabaseManager, schema: str) -> None:
        self._db = db
        self._schema = schema

    def _table(self, name: str) -> sql.Identifier:
        return sql.Identifier(self._schema, name)

    def _execute(self, query: sql.Composable, params: Any = None) -> None:
        try:
            with self._db.get_connection() as conn:
                with conn.cursor() as cur:
                    cur.execute(query, params)
                conn.commit()
        except psycopg.Error as exc:
            raise StoreError(str(exc)) from exc

    def _fetch_all(self, query: sql.Composable, params: Any = None) -> List[Dict[str, Any]]:
        try:
            with self._db.get_connection() as conn:
                with conn.cursor() as cur:
                    cur.execute(query, params)
                    return list(cur.fetchall())
        except psycopg.Error as exc:
            raise StoreError(str(exc)) from exc

    # ------------------------------------------------------------------
    # Test cases
    # ------------------------------------------------------------------
    def list_active_test_cases(self) -> List[TestCase]:
        query = sql.SQL(
            """
            SELECT test_case_id, case_name, patient_profile, service_category, payer_id,
                   expected_output, expected_sections, is_active
            FROM {table}
            WHERE is_active = true
            ORDER BY test_case_id
            """
        ).format(table=self._table("eval_test_cases"))
        return [TestCase.from_record(row) for row in self._fetch_all(query)]

    def upsert_test_case(self, case: TestCase) -> None:
        query = sql.SQL(
            """
            INSERT INTO {table} (
                test_case_id, case_name, patient_profile, service_category, payer_id,
                expected_output, expected_sections, is_active
            ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
            ON CONFLICT (test_case_id) DO UPDATE SET
                case_name = EXCLUDED.case_name,
                patient_profile = EXCLUDED.patient_profile,
                service_category = EXCLUDED.service_category,
                payer_id = EXCLUDED.payer_id,
                expected_output = EXCLUDED.expected_output,
                expected_sections = EXCLUDED.expected_sections,
                is_active = EXCLUDED.is_active,
                updated_at = now()
            """
        ).format(table=self._table("eval_test_cases"))
        self._execute(
            query,
            (
                case.test_case_id,
                case.case_name,
                Json(case.patient_profile),
                case.service_category,
                case.payer_id,
                case.expected_output,
                Json(case.expected_sections),
                case.is_active,
            ),
        )

    # ------------------------------------------------------------------
    # Runs
    # ------------------------------------------------------------------
    def create_run(self, run: EvalRun) -> str:
        query = sql.SQL(
            """
            INSERT INTO {table} (run_id, run_name, run_type, model_id, config, status)
            VALUES (%s, %s, %s, %s, %s, %s)
            """
        ).format(table=self._table("eval_runs"))
        self._execute(query, (run.run_id, run.run_name, run.run_type, run.model_id, Json(run.config), run.status))
        logger.debug("Created eval run %s", run.run_id)
        return run.run_id

    def complete_run(self, run_id: str, summary: RunSummary) -> None:
        query = sql.SQL(
            """
            UPDATE {table}
            SET status = %s, completed_at = now(), summary = %s
            WHERE run_id = %s AND status <> %s
            """
        ).format(table=self._table("eval_runs"))
        self._execute(query, (RUN_STATUS_COMPLETED, Json(summary.to_dict()), run_id, RUN_STATUS_COMPLETED))

    def list_runs(self, limit: int = 20) -> List[Dict[str, Any]]:
        query = sql.SQL(
            """
            SELECT run_id, run_name, run_type, model_id, status, summary, started_at, completed_at
            FROM {table}
            ORDER BY started_at DESC
            LIMIT %s
            """
        ).format(table=self._table("eval_runs"))
        return self._fetch_all(query, (limit,))

    # ------------------------------------------------------------------
    # Results
    # ------------------------------------------------------------------
    def insert_result(self, result: EvalResult) -> None:
        query = sql.SQL(
            """
            INSERT INTO {table} (
                result_id, run_id, test_case_id, generated_output, generation_time_ms,
                criteria_coverage_score, clinical_accuracy_score,
                format_compliance_score, completeness_score,
                llm_judge_score, llm_judge_reasoning, llm_judge_model
            ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            """
        ).format(table=self._table("eval_results"))
        self._execute(
            query,
            (
                result.result_id,
                result.run_id,
                result.test_case_id,
                result.generated_output,
                result.generation_time_ms,
                result.criteria_coverage_score,
                result.clinical_accuracy_score,
                result.format_compliance_score,
                result.completeness_score,
                result.llm_judge_score,
                result.llm_judge_reasoning,
                result.llm_judge_model,
            ),
        )

    def insert_safety_findings(self, result_id: str, report: SafetyReport) -> int:
        if not report.findings:
            return 0
        query = sql.SQL(
            """
            INSERT INTO {table} (safety_log_id, letter_id, check_type, severity, details)
            VALUES (%s, %s, %s, %s, %s)
            """
        ).format(table=self._table("eval_safety_log"))
        rows = [
            (generate_id("safety"), result_id, finding.type.value, finding.severity.value, f"{finding.value}: {finding.detail}")
            for finding in report.findings
        ]
        try:
            with self._db.get_connection() as conn:
                with conn.cursor() as cur:
                    cur.executemany(query, rows)
                conn.commit()
        except psycopg.Error as exc:
            raise StoreError(str(exc)) from exc
        return len(rows)

    def list_results(self, run_id: str) -> List[Dict[str, Any]]:
        query = sql.SQL(
            """
            SELECT result_id, test_case_id, generation_time_ms,
                   criteria_coverage_score, clinical_accuracy_score,
                   format_compliance_score, completeness_score,
                   llm_judge_score, llm_judge_model,
                   LEFT(generated_output, 120) AS output_preview
            FROM {table}
            WHERE run_id = %s
            ORDER BY test_case_id
            """
        ).format(table=self._table("eval_results"))
        return self._fetch_all(query, (run_id,))

    def run_metrics(self, run_id: str) -> RunMetrics:
        query = sql.SQL(
            """
            SELECT
                COUNT(*)::int                      AS total_cases,
                AVG(criteria_coverage_score)       AS avg_criteria_coverage,
                AVG(clinical_accuracy_score)       AS avg_clinical_accuracy,
                AVG(format_compliance_score)       AS avg_format_compliance,
                AVG(completeness_score)            AS avg_completeness,
                AVG(llm_judge_score)               AS avg_llm_judge,
                AVG(generation_time_ms)            AS avg_generation_time_ms,
                MIN(generation_time_ms)            AS min_generation_time_ms,
                MAX(generation_time_ms)            AS max_generation_time_ms,
                COUNT(*) FILTER (WHERE criteria_coverage_score >= %(threshold)s)::int AS pass_criteria_coverage,
                COUNT(*) FILTER (WHERE clinical_accuracy_score >= %(threshold)s)::int AS pass_clinical_accuracy,
                COUNT(*) FILTER (WHERE format_compliance_score >= %(threshold)s)::int AS pass_format_compliance,
                COUNT(*) FILTER (WHERE completeness_score >= %(threshold)s)::int      AS pass_completeness,
                COUNT(*) FILTER (WHERE llm_judge_score >= %(judge_threshold)s)::int   AS pass_llm_judge
            FROM {table}
            WHERE run_id = %(run_id)s
            """
        ).format(table=self._table("eval_results"))
        rows = self._fetch_all(
            query,
            {"run_id": run_id, "threshold": PASS_THRESHOLD, "judge_threshold": JUDGE_PASS_THRESHOLD},
        )
        return RunMetrics.from_row(run_id, rows[0] if rows else {})
