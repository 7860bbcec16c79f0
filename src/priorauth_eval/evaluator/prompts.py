"""Prompt text, payer policies and the non-identifying clinical packet."""

from __future__ import annotations

import json
from typing import Any, Dict, List, Optional, Tuple

GENERATION_SYSTEM_PROMPT = "\n".join(
    [
        "You are a clinical prior-authorization letter generator.",
        "Generate a complete prior-authorization letter using the patient data provided.",
        "Include sections: CLINICAL HISTORY, CONSERVATIVE TREATMENT, DIAGNOSTIC IMAGING, MEDICAL NECESSITY.",
        "Use a professional, clinical tone.",
        'If data is missing, write "[MISSING: ...]" rather than inventing.',
        "Return ONLY the final letter text. No JSON. No markdown fences.",
    ]
)

JUDGE_SYSTEM_PROMPT = """You are a medical reviewer evaluating prior authorization letters for insurance payers. Score the following letter on a scale of 1-10 based on these five dimensions:

1. Medical Accuracy - Are diagnoses, procedure codes, and clinical facts correct and consistent?
2. Completeness - Are all required sections present? Is clinical history, conservative treatment, and medical necessity addressed?
3. Persuasiveness - Does the letter make a compelling case for medical necessity with specific evidence?
4. Policy Alignment - Does the letter address the payer's specific criteria and requirements?
5. Professional Tone - Is the language formal, clear, and appropriate for a medical-legal document?

Return ONLY a JSON object with this exact structure (no markdown, no code fences):
{ "score": N, "reasoning": "..." }

Where N is the overall score (1-10) and reasoning explains your assessment across the five dimensions in 2-4 sentences."""

DEFAULT_PAYER = "BCBS"

POLICY_SUMMARIES: Dict[str, str] = {
    "AETNA": (
        "Aetna Clinical Policy Bulletin: Requires documented functional assessment, "
        "minimum 6 weeks conservative therapy, imaging correlation."
    ),
    "BCBS": (
        "BCBS Medical Policy: Requires minimum 6 weeks physical therapy, "
        "documented imaging findings, failed conservative management."
    ),
}

POLICY_CRITERIA: Dict[str, str] = {
    "AETNA": "\n".join(
        [
            "1. Documented functional assessment scores",
            "2. Minimum 6 weeks conservative therapy",
            "3. Imaging correlation with symptoms",
            "4. Failed at least 2 medication classes",
            "5. Documented neurological examination",
        ]
    ),
    "BCBS": "\n".join(
        [
            "1. Minimum 6 weeks physical therapy",
            "2. At least 2 epidural steroid injections attempted",
            "3. MRI or CT imaging demonstrating pathology",
            "4. Failed at least 2 conservative treatment modalities",
            "5. Documentation of functional limitations",
        ]
    ),
}

# Clinical fields copied into the packet, with the keys kept for each entry.
# Anything else on the profile or on an entry stays behind.
PACKET_ENTRY_FIELDS: Dict[str, Tuple[str, ...]] = {
    "problems": ("icd10", "icd10_code", "description", "onset"),
    "therapy": ("type", "duration_weeks", "count", "outcome"),
    "imaging": ("modality", "date", "findings"),
    "med_trials": ("drug", "duration", "outcome"),
}
PACKET_CODE_FIELDS = ("cpt_codes", "icd10_codes")
PACKET_COVERAGE_FIELDS = ("payer", "plan")


def _payer_key(payer_id: Optional[str]) -> str:
    key = (payer_id or "").strip().upper()
    return key if key in POLICY_CRITERIA else DEFAULT_PAYER


def policy_summary(payer_id: Optional[str]) -> str:
    return POLICY_SUMMARIES[_payer_key(payer_id)]


def policy_criteria(payer_id: Optional[str]) -> str:
    return POLICY_CRITERIA[_payer_key(payer_id)]


def _entry(entry: Any, keys: Tuple[str, ...]) -> Optional[Any]:
    if isinstance(entry, dict):
        return {key: entry[key] for key in keys if key in entry}
    if isinstance(entry, str):
        return entry
    return None


def _as_list(value: Any) -> List[Any]:
    return list(value) if isinstance(value, list) else []


def build_clinical_packet(patient_profile: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Filtered view of a patient profile holding only clinically relevant fields.

    Entries keep only their allowlisted keys. Free-text clinical values such as
    ``description`` or ``findings`` are passed through unchanged.
    """
    profile = patient_profile or {}
    packet: Dict[str, Any] = {}
    for key, entry_keys in PACKET_ENTRY_FIELDS.items():
        entries = (_entry(entry, entry_keys) for entry in _as_list(profile.get(key)))
        packet[key] = [entry for entry in entries if entry is not None]
    for key in PACKET_CODE_FIELDS:
        packet[key] = [str(code) for code in _as_list(profile.get(key))]

    coverage = profile.get("coverage")
    if isinstance(coverage, dict):
        packet["coverage"] = {key: coverage[key] for key in PACKET_COVERAGE_FIELDS if key in coverage}
    else:
        packet["coverage"] = {}
    return packet


def build_generation_prompt(packet: Dict[str, Any], payer_id: Optional[str]) -> str:
    lines: List[str] = [
        "PATIENT DATA:",
        json.dumps(packet, indent=2, sort_keys=True),
        "",
        "POLICY CRITERIA:",
        policy_summary(payer_id),
    ]
    return "\n".join(lines)


def build_judge_prompt(letter_text: str, criteria: Optional[str] = None) -> str:
    prompt = f"## Prior Authorization Letter to Evaluate\n\n{letter_text}"
    if criteria:
        prompt += f"\n\n## Payer Policy Criteria\n\n{criteria}"
    return prompt
