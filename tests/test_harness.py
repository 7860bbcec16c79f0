import httpx
import pytest

from priorauth_eval.evaluator import case_runner, metrics
from priorauth_eval.evaluator.case_runner import CaseRunner
from priorauth_eval.evaluator.harness import Evaluator, build_result, summarize
from priorauth_eval.evaluator.judge import JudgeVerdict
from priorauth_eval.evaluator.models import CaseFailure, CaseSuccess, EvalResult, TestCase
from priorauth_eval.evaluator.safety import Severity
from priorauth_eval.evaluator.store import StoreError
from priorauth_eval.llm import ChatReply, LLMGenerationError, ResponseShape

from conftest import build_config

LETTER = """Dear Medical Director,

CLINICAL HISTORY:
Lumbar disc degeneration (M51.16).

CONSERVATIVE TREATMENT:
Minimum 6 weeks physical therapy completed without relief.

MEDICAL NECESSITY:
We request CPT 22612.

Sincerely,
Dr. Reyes"""


def _case(test_case_id: str) -> TestCase:
    return TestCase(
        test_case_id=test_case_id,
        case_name=f"Case {test_case_id}",
        payer_id="BCBS",
        patient_profile={
            "name": "Synthetic Patient",
            "problems": [{"icd10": "M51.16"}],
            "cpt_codes": ["22612"],
            "icd10_codes": ["M51.16"],
        },
        expected_sections=["CLINICAL HISTORY", "CONSERVATIVE TREATMENT", "DIAGNOSTIC IMAGING", "MEDICAL NECESSITY"],
    )


class _FakeClient:
    def __init__(self, responses):
        self._responses = list(responses)
        self.prompts = []

    def generate(self, prompt, *, system=None, temperature=None, max_tokens=None):
        self.prompts.append(prompt)
        nxt = self._responses.pop(0)
        if isinstance(nxt, Exception):
            raise nxt
        return ChatReply(text=nxt, model="fake-model", shape=ResponseShape.MESSAGE_CONTENT, latency_ms=1)


class _FakeJudge:
    def __init__(self, scores):
        self._scores = list(scores)
        self.calls = 0

    def judge(self, letter_text, policy_criteria=None):
        self.calls += 1
        score = self._scores.pop(0)
        return JudgeVerdict(score=score, reasoning=f"scored {score}", model="judge-model")


class _FakeStore:
    def __init__(self, cases, fail_insert_for=(), fail_complete=False):
        self._cases = list(cases)
        self._fail_insert_for = set(fail_insert_for)
        self._fail_complete = fail_complete
        self.runs = []
        self.results = []
        self.safety = []
        self.completed = []

    def list_active_test_cases(self):
        return list(self._cases)

    def create_run(self, run):
        self.runs.append(run)
        return run.run_id

    def insert_result(self, result):
        if result.test_case_id in self._fail_insert_for:
            raise StoreError("insert failed")
        self.results.append(result)

    def insert_safety_findings(self, result_id, report):
        self.safety.append((result_id, report))
        return len(report.findings)

    def complete_run(self, run_id, summary):
        if self._fail_complete:
            raise StoreError("update failed")
        self.completed.append((run_id, summary))


def _evaluator(store, client, judge=None, **config_overrides):
    config = build_config(run_name="unit-run", **config_overrides)
    return Evaluator(config, store=store, case_runner=CaseRunner(config, client, judge))


def test_run_with_no_active_cases_creates_nothing():
    store = _FakeStore([])
    assert _evaluator(store, _FakeClient([])).run() is None
    assert store.runs == []
    assert store.completed == []


def test_generation_error_is_stored_but_excluded_from_averages():
    store = _FakeStore([_case("golden-001"), _case("golden-002"), _case("golden-003")])
    client = _FakeClient([LETTER, LLMGenerationError("boom"), LETTER])
    judge = _FakeJudge([8, 0])

    report = _evaluator(store, client, judge).run()

    assert report is not None
    assert report.run_name == "unit-run"
    summary = report.summary
    assert summary.total_cases == 3
    assert summary.completed_cases == 3
    assert summary.scored_cases == 2
    assert summary.failed_cases == 1
    assert summary.lost_cases == 0

    failed = store.results[1]
    assert failed.generated_output == "ERROR: boom"
    assert failed.criteria_coverage_score is None
    assert failed.llm_judge_score is None

    scored = store.results[0]
    assert summary.avg_criteria_coverage == pytest.approx(scored.criteria_coverage_score)
    assert summary.avg_clinical_accuracy == pytest.approx(1.0)
    assert summary.avg_completeness == pytest.approx(1.0)
    assert summary.avg_format_compliance == pytest.approx(0.75)
    # The second judged letter got no verdict; only the first counts.
    assert store.results[2].llm_judge_score is None
    assert store.results[2].llm_judge_reasoning == "scored 0"
    assert summary.avg_llm_judge_score == pytest.approx(8.0)
    assert judge.calls == 2

    run_id, stored_summary = store.completed[0]
    assert run_id == report.run_id == store.runs[0].run_id
    assert stored_summary is summary
    assert store.runs[0].config["model"] == "test-model"


def test_generation_prompt_excludes_identifiers():
    client = _FakeClient([LETTER])
    _evaluator(_FakeStore([_case("golden-001")]), client).run()
    assert "Synthetic Patient" not in client.prompts[0]
    assert "M51.16" in client.prompts[0]


def test_failed_result_insert_counts_case_as_lost():
    store = _FakeStore([_case("golden-001"), _case("golden-002")], fail_insert_for={"golden-001"})
    report = _evaluator(store, _FakeClient([LETTER, LETTER])).run()
    assert report.summary.total_cases == 2
    assert report.summary.completed_cases == 1
    assert report.summary.lost_cases == 1
    assert [result.test_case_id for result in store.results] == ["golden-002"]


def test_failed_summary_write_propagates():
    store = _FakeStore([_case("golden-001")], fail_complete=True)
    with pytest.raises(StoreError):
        _evaluator(store, _FakeClient([LETTER])).run()


def test_critical_findings_are_logged_and_counted():
    letter = LETTER.replace("CPT 22612.", "CPT 22612 and 99999.")
    store = _FakeStore([_case("golden-001")])
    report = _evaluator(store, _FakeClient([letter])).run()

    assert report.summary.safety_critical_cases == 1
    result_id, safety_report = store.safety[0]
    assert result_id == store.results[0].result_id
    assert safety_report.severity is Severity.CRITICAL


def test_scoring_failure_becomes_case_failure(monkeypatch):
    def explode(letter_text):
        raise ValueError("bad letter")

    monkeypatch.setattr(metrics, "evaluate_completeness", explode)
    outcome = CaseRunner(build_config(), _FakeClient([LETTER])).run(_case("golden-001"))

    assert isinstance(outcome, CaseFailure)
    assert outcome.stage == "scoring"
    assert outcome.marker == "ERROR: bad letter"


def test_case_runner_without_judge_leaves_verdict_empty():
    outcome = CaseRunner(build_config(), _FakeClient([LETTER])).run(_case("golden-001"))
    assert isinstance(outcome, CaseSuccess)
    assert outcome.judge is None
    assert outcome.safety.severity is Severity.SAFE

    result = build_result("run-1", outcome)
    assert result.scored
    assert result.llm_judge_score is None
    assert result.llm_judge_model is None


def test_summarize_with_no_scored_rows_averages_to_zero():
    failed = EvalResult(
        result_id="res-1",
        run_id="run-1",
        test_case_id="golden-001",
        generated_output="ERROR: boom",
        generation_time_ms=5,
    )
    summary = summarize(1, [failed])
    assert summary.completed_cases == 1
    assert summary.scored_cases == 0
    assert summary.avg_criteria_coverage == 0
    assert summary.avg_llm_judge_score == 0
    assert summary.to_dict()["failed_cases"] == 1


def test_transport_error_fails_only_its_case():
    store = _FakeStore([_case("golden-001"), _case("golden-002")])
    client = _FakeClient([httpx.StreamError("connection dropped mid-body"), LETTER])

    report = _evaluator(store, client).run()

    assert report.summary.total_cases == 2
    assert report.summary.completed_cases == 2
    assert report.summary.failed_cases == 1
    assert report.summary.scored_cases == 1
    assert store.results[0].generated_output == "ERROR: StreamError: connection dropped mid-body"
    assert store.results[0].criteria_coverage_score is None
    assert store.results[1].scored
    assert len(store.completed) == 1


def test_prompt_building_failure_is_a_generation_failure(monkeypatch):
    def explode(profile):
        raise TypeError("unexpected profile layout")

    monkeypatch.setattr(case_runner, "build_clinical_packet", explode)
    client = _FakeClient([LETTER])
    outcome = CaseRunner(build_config(), client).run(_case("golden-001"))

    assert isinstance(outcome, CaseFailure)
    assert outcome.stage == "generation"
    assert outcome.marker == "ERROR: TypeError: unexpected profile layout"
    assert client.prompts == []
