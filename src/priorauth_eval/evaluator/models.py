"""Common data models for evaluation runs."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Union

if TYPE_CHECKING:  # pragma: no cover - typing only
    from priorauth_eval.evaluator.judge import JudgeVerdict
    from priorauth_eval.evaluator.metrics import (
        AccuracyResult,
        CompletenessResult,
        CoverageResult,
        FormatResult,
    )
    from priorauth_eval.evaluator.safety import SafetyReport


RUN_STATUS_RUNNING = "running"
RUN_STATUS_COMPLETED = "completed"


@dataclass(frozen=True)
class TestCase:
    """Golden fixture: a synthetic patient profile plus what a good letter must contain."""

    __test__ = False  # keep pytest from collecting this class

    test_case_id: str
    case_name: str
    payer_id: str
    patient_profile: Dict[str, Any]
    expected_sections: List[str] = field(default_factory=list)
    is_active: bool = True
    service_category: Optional[str] = None
    expected_output: str = ""

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "TestCase":
        profile = record.get("patient_profile") or {}
        sections = record.get("expected_sections") or []
        return cls(
            test_case_id=str(record["test_case_id"]),
            case_name=str(record.get("case_name") or record["test_case_id"]),
            payer_id=str(record.get("payer_id") or ""),
            patient_profile=dict(profile) if isinstance(profile, dict) else {},
            expected_sections=[str(section) for section in sections if section],
            is_active=bool(record.get("is_active", True)),
            service_category=record.get("service_category"),
            expected_output=str(record.get("expected_output") or ""),
        )


@dataclass
class EvalRun:
    run_id: str
    run_name: str
    run_type: str
    model_id: str
    config: Dict[str, Any]
    status: str = RUN_STATUS_RUNNING
    summary: Optional[Dict[str, Any]] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


@dataclass(frozen=True)
class EvalResult:
    """One persisted row per (run, test case)."""

    result_id: str
    run_id: str
    test_case_id: str
    generated_output: str
    generation_time_ms: int
    criteria_coverage_score: Optional[float] = None
    clinical_accuracy_score: Optional[float] = None
    format_compliance_score: Optional[float] = None
    completeness_score: Optional[float] = None
    llm_judge_score: Optional[int] = None
    llm_judge_reasoning: Optional[str] = None
    llm_judge_model: Optional[str] = None

    @property
    def scored(self) -> bool:
        return self.criteria_coverage_score is not None


@dataclass
class CaseSuccess:
    test_case_id: str
    letter_text: str
    generation_time_ms: int
    coverage: "CoverageResult"
    accuracy: "AccuracyResult"
    format: "FormatResult"
    completeness: "CompletenessResult"
    safety: "SafetyReport"
    judge: Optional["JudgeVerdict"] = None
    ok: bool = field(default=True, init=False)


@dataclass
class CaseFailure:
    test_case_id: str
    error: str
    elapsed_ms: int
    stage: str = "generation"
    ok: bool = field(default=False, init=False)

    @property
    def marker(self) -> str:
        return f"ERROR: {self.error}"


CaseOutcome = Union[CaseSuccess, CaseFailure]


@dataclass
class RunSummary:
    total_cases: int
    completed_cases: int
    scored_cases: int
    failed_cases: int
    lost_cases: int
    safety_critical_cases: int
    avg_criteria_coverage: float
    avg_clinical_accuracy: float
    avg_format_compliance: float
    avg_completeness: float
    avg_llm_judge_score: float

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


PASS_THRESHOLD = 0.8
JUDGE_PASS_THRESHOLD = 8
METRIC_NAMES = ("criteria_coverage", "clinical_accuracy", "format_compliance", "completeness", "llm_judge")


def _optional_float(value: Any) -> Optional[float]:
    return None if value is None else float(value)


@dataclass
class RunMetrics:
    """Aggregate view of the rows stored for one run."""

    run_id: str
    total_cases: int
    averages: Dict[str, Optional[float]] = field(default_factory=dict)
    pass_counts: Dict[str, int] = field(default_factory=dict)
    avg_generation_time_ms: Optional[float] = None
    min_generation_time_ms: Optional[int] = None
    max_generation_time_ms: Optional[int] = None

    @classmethod
    def from_row(cls, run_id: str, row: Dict[str, Any]) -> "RunMetrics":
        min_ms = row.get("min_generation_time_ms")
        max_ms = row.get("max_generation_time_ms")
        return cls(
            run_id=run_id,
            total_cases=int(row.get("total_cases") or 0),
            averages={name: _optional_float(row.get(f"avg_{name}")) for name in METRIC_NAMES},
            pass_counts={name: int(row.get(f"pass_{name}") or 0) for name in METRIC_NAMES},
            avg_generation_time_ms=_optional_float(row.get("avg_generation_time_ms")),
            min_generation_time_ms=None if min_ms is None else int(min_ms),
            max_generation_time_ms=None if max_ms is None else int(max_ms),
        )

    @property
    def pass_rates(self) -> Optional[Dict[str, float]]:
        if not self.total_cases:
            return None
        return {name: self.pass_counts.get(name, 0) / self.total_cases for name in METRIC_NAMES}
