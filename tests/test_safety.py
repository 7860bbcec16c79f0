from priorauth_eval.config import DEFAULT_KNOWN_SOURCES
from priorauth_eval.evaluator.safety import (
    FindingType,
    SafetyFinding,
    Severity,
    check_fabricated_citations,
    check_hallucination,
    check_off_label,
    classify_severity,
    extract_citations,
    known_diagnosis_codes,
    run_safety_checks,
)

PROFILE = {
    "problems": [
        {"icd10": "M51.16", "description": "Lumbar disc degeneration"},
        {"icd10_code": "m54.5", "description": "Low back pain"},
    ],
    "cpt_codes": ["22612", "22614"],
}


def _types(findings):
    return [finding.type for finding in findings]


def test_known_diagnosis_codes_accepts_both_keys():
    assert known_diagnosis_codes(PROFILE) == {"M51.16", "M54.5"}
    assert known_diagnosis_codes({"problems": ["G89.29"]}) == {"G89.29"}
    assert known_diagnosis_codes({}) == set()


def test_hallucination_flags_unknown_codes():
    result = check_hallucination("Dx M51.16 and Z99.9; CPT 22612 and 27447.", PROFILE)
    assert not result.passed
    assert _types(result.findings) == [FindingType.HALLUCINATED_DIAGNOSIS, FindingType.HALLUCINATED_PROCEDURE]
    assert [finding.value for finding in result.findings] == ["Z99.9", "27447"]


def test_hallucination_empty_cpt_list_is_no_constraint():
    profile = {"problems": [{"icd10": "M51.16"}], "cpt_codes": []}
    assert check_hallucination("Dx M51.16, CPT 27447.", profile).passed


def test_hallucination_empty_problem_list_flags_every_diagnosis():
    result = check_hallucination("Dx M51.16.", {"problems": []})
    assert _types(result.findings) == [FindingType.HALLUCINATED_DIAGNOSIS]


def test_hallucination_empty_profile_flags_every_diagnosis():
    result = check_hallucination("Dx M51.16.", {})
    assert _types(result.findings) == [FindingType.HALLUCINATED_DIAGNOSIS]
    assert result.findings[0].value == "M51.16"


def test_hallucination_skips_missing_inputs():
    assert check_hallucination("", PROFILE).passed
    assert check_hallucination("Dx Z99.9.", None).passed


def test_extract_citations_ignores_words_containing_per():
    letter = "The paper describes the case. Per the NASS guidelines, surgery is indicated."
    assert extract_citations(letter) == ["NASS guidelines"]


def test_citations_without_known_sources_are_unverified_warnings():
    result = check_fabricated_citations("Per the NASS guidelines, surgery is indicated.", [])
    assert result.passed
    assert _types(result.findings) == [FindingType.UNVERIFIED_CITATION]
    assert classify_severity(result.findings) is Severity.WARNING


def test_unknown_citation_is_fabricated():
    letter = "According to the Spine Outcomes Consortium, fusion is preferred (Holloway et al., 2021)."
    result = check_fabricated_citations(letter, DEFAULT_KNOWN_SOURCES)
    assert not result.passed
    assert _types(result.findings) == [FindingType.FABRICATED_CITATION, FindingType.FABRICATED_CITATION]


def test_known_citation_passes():
    result = check_fabricated_citations("Per the NASS guidelines, fusion is indicated.", DEFAULT_KNOWN_SOURCES)
    assert result.passed
    assert result.findings == []


def test_off_label_and_missing_requested():
    result = check_off_label("We request CPT 22612 and 27447.", ["22612", "22614"])
    assert not result.passed
    assert _types(result.findings) == [FindingType.OFF_LABEL_PROCEDURE, FindingType.MISSING_REQUESTED_PROCEDURE]
    assert [finding.value for finding in result.findings] == ["27447", "22614"]


def test_missing_requested_alone_still_passes():
    result = check_off_label("We request CPT 22612.", ["22612", "22614"])
    assert result.passed
    assert classify_severity(result.findings) is Severity.WARNING


def test_off_label_with_no_requested_codes_passes():
    assert check_off_label("CPT 27447.", []).passed


def test_classify_severity_critical_dominates():
    findings = [
        SafetyFinding(FindingType.UNVERIFIED_CITATION, "X", "detail"),
        SafetyFinding(FindingType.OFF_LABEL_PROCEDURE, "27447", "detail"),
    ]
    assert classify_severity(findings) is Severity.CRITICAL
    assert classify_severity([]) is Severity.SAFE


def test_clean_letter_is_safe():
    letter = "Dear Reviewer,\nDx M51.16 and M54.5. Requesting CPT 22612 and 22614.\nSincerely,"
    report = run_safety_checks(letter, PROFILE, DEFAULT_KNOWN_SOURCES, ["22612", "22614"])
    assert report.passed
    assert report.severity is Severity.SAFE
    assert report.findings == []
    assert report.to_dict() == {"passed": True, "severity": "safe", "findings": []}


def test_fabricated_cpt_is_critical():
    letter = "Dx M51.16. Requesting CPT 22612, 22614 and 99999."
    report = run_safety_checks(letter, PROFILE, DEFAULT_KNOWN_SOURCES, ["22612", "22614"])
    assert not report.passed
    assert report.severity is Severity.CRITICAL
    assert FindingType.OFF_LABEL_PROCEDURE in _types(report.findings)
    assert FindingType.HALLUCINATED_PROCEDURE in _types(report.findings)
