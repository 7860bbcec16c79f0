"""Deterministic accuracy metrics for generated prior-authorization letters.

Every scorer is a pure function of the letter text and its reference data and
returns a breakdown whose ``score`` lies in [0, 1], rounded to three decimals.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Sequence

# Keyword overlap, penalty and bonus constants are part of the scoring contract.
CRITERION_MATCH_THRESHOLD = 0.4
CRITERION_MIN_LENGTH = 5
KEYWORD_MIN_LENGTH = 4
FABRICATED_CODE_PENALTY = 0.1
FABRICATED_CODE_PENALTY_NO_EXPECTED = 0.2
PLACEHOLDER_PENALTY = 0.15
MISSING_SALUTATION_PENALTY = 0.1
MISSING_CLOSING_PENALTY = 0.1

ICD10_RE = re.compile(r"\b([A-Z]\d{2,3}\.\d{1,4})\b", re.IGNORECASE)
CPT_RE = re.compile(r"\b(\d{5})\b")
CPT_MIN = 10000
CPT_MAX = 99999

_CRITERION_SPLIT_RE = re.compile(r"^\s*(?:\d+[.)]|[-*•])\s*", re.MULTILINE)
_NON_WORD_RE = re.compile(r"[^\w\s]")
_HEADER_PREFIX_RE = re.compile(r"^[#*\-•]+\s*")
_HEADER_SUFFIX_RE = re.compile(r":\s*$")
_PLACEHOLDER_RE = re.compile(
    r"\[(?:MISSING|TODO|TBD|FILL|INSERT|PLACEHOLDER)\b:?[^\]]*\]",
    re.IGNORECASE,
)
_SALUTATION_RES = (
    re.compile(r"\bdear\b", re.IGNORECASE),
    re.compile(r"\bre:\s", re.IGNORECASE),
    re.compile(r"to whom it may concern", re.IGNORECASE),
)
_CLOSING_RES = (
    re.compile(r"\bsincerely\b", re.IGNORECASE),
    re.compile(r"\brespectfully\b", re.IGNORECASE),
    re.compile(r"\bthank you\b", re.IGNORECASE),
    re.compile(r"\bregards\b", re.IGNORECASE),
)


@dataclass(frozen=True)
class CoverageResult:
    score: float
    addressed: List[str] = field(default_factory=list)
    missed: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class AccuracyResult:
    score: float
    found: List[str] = field(default_factory=list)
    missing: List[str] = field(default_factory=list)
    fabricated: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class FormatResult:
    score: float
    present: List[str] = field(default_factory=list)
    missing: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class CompletenessResult:
    score: float
    placeholder_markers: List[str] = field(default_factory=list)
    has_salutation: bool = False
    has_closing: bool = False


def _bounded(value: float) -> float:
    return round(max(0.0, min(1.0, value)), 3)


def _unique(values: Iterable[str]) -> List[str]:
    seen: List[str] = []
    for value in values:
        if value and value not in seen:
            seen.append(value)
    return seen


def extract_icd10_codes(text: Optional[str]) -> List[str]:
    """Diagnosis codes in order of first appearance, upper-cased."""
    if not text:
        return []
    return _unique(match.group(1).upper() for match in ICD10_RE.finditer(text))


def extract_cpt_codes(text: Optional[str]) -> List[str]:
    """Five-digit procedure codes in [10000, 99999], in order of first appearance."""
    if not text:
        return []
    codes = (match.group(1) for match in CPT_RE.finditer(text))
    return _unique(code for code in codes if CPT_MIN <= int(code) <= CPT_MAX)


def split_criteria(policy_criteria: Optional[str]) -> List[str]:
    """Split a criteria block into its numbered or bulleted items."""
    if not policy_criteria or not policy_criteria.strip():
        return []
    pieces = _CRITERION_SPLIT_RE.split(policy_criteria)
    return [piece.strip() for piece in pieces if len(piece.strip()) > CRITERION_MIN_LENGTH]


def criterion_keywords(criterion: str) -> List[str]:
    cleaned = _NON_WORD_RE.sub("", criterion.lower())
    return [word for word in cleaned.split() if len(word) >= KEYWORD_MIN_LENGTH]


def evaluate_criteria_coverage(letter_text: Optional[str], policy_criteria: Optional[str]) -> CoverageResult:
    """Share of policy criteria whose keywords are sufficiently echoed by the letter."""
    items = split_criteria(policy_criteria)
    if not items:
        return CoverageResult(score=1.0)
    if not letter_text:
        return CoverageResult(score=0.0, missed=items)

    letter_lower = letter_text.lower()
    addressed: List[str] = []
    missed: List[str] = []
    for criterion in items:
        keywords = criterion_keywords(criterion)
        if not keywords:
            # Nothing substantial to look for.
            addressed.append(criterion)
            continue
        matches = sum(1 for word in keywords if word in letter_lower)
        if matches / len(keywords) >= CRITERION_MATCH_THRESHOLD:
            addressed.append(criterion)
        else:
            missed.append(criterion)

    return CoverageResult(
        score=_bounded(len(addressed) / len(items)),
        addressed=addressed,
        missed=missed,
    )


def evaluate_clinical_accuracy(
    letter_text: Optional[str],
    expected_icd10: Optional[Iterable[object]],
    expected_cpt: Optional[Iterable[object]],
) -> AccuracyResult:
    """Compare codes cited in the letter with the codes on the reference profile."""
    icd10_expected = _unique(str(code).strip().upper() for code in (expected_icd10 or []))
    cpt_expected = _unique(str(code).strip() for code in (expected_cpt or []))
    all_expected = icd10_expected + cpt_expected

    if not letter_text:
        return AccuracyResult(score=0.0, missing=all_expected)

    all_found = extract_icd10_codes(letter_text) + extract_cpt_codes(letter_text)
    found = [code for code in all_expected if code in all_found]
    missing = [code for code in all_expected if code not in all_found]
    fabricated = [code for code in all_found if code not in all_expected]

    if not all_expected:
        score = max(0.0, 1.0 - FABRICATED_CODE_PENALTY_NO_EXPECTED * len(fabricated))
    else:
        score = len(found) / len(all_expected) - FABRICATED_CODE_PENALTY * len(fabricated)

    return AccuracyResult(
        score=_bounded(score),
        found=found,
        missing=missing,
        fabricated=fabricated,
    )


def _significant_words(section: str) -> List[str]:
    words = section.lower().split()
    significant = [word for word in words if len(word) >= 3]
    return significant or words


def _header_line_matches(lines: Sequence[str], words: Sequence[str]) -> bool:
    for line in lines:
        candidate = _HEADER_SUFFIX_RE.sub("", _HEADER_PREFIX_RE.sub("", line.lower()))
        if candidate and all(word in candidate for word in words):
            return True
    return False


def evaluate_format_compliance(
    letter_text: Optional[str], expected_sections: Optional[Sequence[str]]
) -> FormatResult:
    """Share of expected section headers that appear in the letter."""
    sections = [str(section) for section in (expected_sections or []) if str(section).strip()]
    if not letter_text or not sections:
        return FormatResult(score=0.0, missing=sections)

    letter_lower = letter_text.lower()
    lines = [line.strip() for line in letter_text.splitlines()]
    present: List[str] = []
    missing: List[str] = []
    for section in sections:
        if section.lower() in letter_lower or _header_line_matches(lines, _significant_words(section)):
            present.append(section)
        else:
            missing.append(section)

    return FormatResult(
        score=_bounded(len(present) / len(sections)),
        present=present,
        missing=missing,
    )


def find_placeholder_markers(letter_text: Optional[str]) -> List[str]:
    if not letter_text:
        return []
    return [match.group(0) for match in _PLACEHOLDER_RE.finditer(letter_text)]


def evaluate_completeness(letter_text: Optional[str]) -> CompletenessResult:
    """Penalize unresolved placeholders and a missing salutation or closing."""
    if not letter_text:
        return CompletenessResult(score=0.0)

    markers = find_placeholder_markers(letter_text)
    has_salutation = any(pattern.search(letter_text) for pattern in _SALUTATION_RES)
    has_closing = any(pattern.search(letter_text) for pattern in _CLOSING_RES)

    score = 1.0 - PLACEHOLDER_PENALTY * len(markers)
    if not has_salutation:
        score -= MISSING_SALUTATION_PENALTY
    if not has_closing:
        score -= MISSING_CLOSING_PENALTY

    return CompletenessResult(
        score=_bounded(score),
        placeholder_markers=markers,
        has_salutation=has_salutation,
        has_closing=has_closing,
    )
