"""LLM-as-judge: a second model pass that scores letter quality from 1 to 10."""

from __future__ import annotations

import json
import logging
import math
import re
from dataclasses import dataclass
from typing import Any, Dict, Optional

from priorauth_eval.config import EvaluatorConfig
from priorauth_eval.evaluator.prompts import JUDGE_SYSTEM_PROMPT, build_judge_prompt
from priorauth_eval.llm import LLMGenerationError, LLMTimeoutError, TextLLMClient

logger = logging.getLogger(__name__)

JUDGE_MIN_SCORE = 1
JUDGE_MAX_SCORE = 10
NO_SCORE = 0
RAW_EXCERPT_LIMIT = 500

_FENCE_RE = re.compile(r"```(?:json)?\s*\n?([\s\S]*?)\n?\s*```", re.IGNORECASE)
_RECORD_RE = re.compile(r'\{[\s\S]*"score"\s*:\s*\d+[\s\S]*"(?:reasoning|rationale)"\s*:[\s\S]*\}')
_NUMERIC_SCORE_RES = (
    re.compile(r"score[:\s]+(\d+)", re.IGNORECASE),
    re.compile(r"(\d+)\s*(?:/\s*10|out\s+of\s+10)", re.IGNORECASE),
    re.compile(r"\b([1-9]|10)\b"),
)


@dataclass(frozen=True)
class JudgeVerdict:
    """Always-complete judge output; ``score`` is 0 when no judgment was obtained."""

    score: int
    reasoning: str
    model: str

    @property
    def succeeded(self) -> bool:
        return JUDGE_MIN_SCORE <= self.score <= JUDGE_MAX_SCORE


def _as_record(candidate: Any) -> Optional[Dict[str, Any]]:
    if not isinstance(candidate, dict):
        return None
    score = candidate.get("score")
    if isinstance(score, bool) or not isinstance(score, (int, float)) or not math.isfinite(score):
        return None
    reasoning = candidate.get("reasoning", candidate.get("rationale"))
    if not isinstance(reasoning, str):
        return None
    return {"score": score, "reasoning": reasoning}


def _try_load(text: str) -> Optional[Dict[str, Any]]:
    try:
        return _as_record(json.loads(text.strip()))
    except (json.JSONDecodeError, ValueError):
        return None


def extract_json_record(text: Optional[str]) -> Optional[Dict[str, Any]]:
    """Recover a ``{"score", "reasoning"}`` record from a possibly decorated response."""
    if not text:
        return None

    record = _try_load(text)
    if record is not None:
        return record

    fence = _FENCE_RE.search(text)
    if fence:
        record = _try_load(fence.group(1))
        if record is not None:
            return record

    shape = _RECORD_RE.search(text)
    if shape:
        record = _try_load(shape.group(0))
        if record is not None:
            return record
    return None


def extract_numeric_score(text: Optional[str]) -> int:
    """Pull a 1-10 score out of free text, or 0 when none is present."""
    if not text:
        return NO_SCORE
    for pattern in _NUMERIC_SCORE_RES:
        match = pattern.search(text)
        if match:
            value = int(match.group(1))
            if JUDGE_MIN_SCORE <= value <= JUDGE_MAX_SCORE:
                return value
    return NO_SCORE


def clamp_score(value: float) -> int:
    # Half-up rounding, then clamp into the judge's scale.
    rounded = int(math.floor(float(value) + 0.5))
    return max(JUDGE_MIN_SCORE, min(JUDGE_MAX_SCORE, rounded))


def parse_judge_response(content: str, model: str) -> JudgeVerdict:
    record = extract_json_record(content)
    if record is not None:
        return JudgeVerdict(
            score=clamp_score(record["score"]),
            reasoning=record["reasoning"].strip(),
            model=model,
        )
    return JudgeVerdict(
        score=extract_numeric_score(content),
        reasoning=f"LLM response could not be parsed as JSON. Raw response: {(content or '')[:RAW_EXCERPT_LIMIT]}",
        model=model,
    )


class JudgeClient:
    """Score a letter with the configured model; never raises to its caller."""

    def __init__(self, config: EvaluatorConfig, client: TextLLMClient) -> None:
        self._config = config
        self._client = client

    @property
    def model(self) -> str:
        return self._config.model

    def judge(self, letter_text: Optional[str], policy_criteria: Optional[str] = None) -> JudgeVerdict:
        if not letter_text:
            return JudgeVerdict(score=NO_SCORE, reasoning="No letter text provided for evaluation.", model=self.model)

        try:
            reply = self._client.chat(
                build_judge_prompt(letter_text, policy_criteria),
                system=JUDGE_SYSTEM_PROMPT,
                temperature=self._config.judge_temperature,
                max_tokens=self._config.judge_max_tokens,
                timeout_seconds=self._config.judge_timeout_seconds,
                retry=False,
            )
        except LLMTimeoutError:
            logger.warning("LLM judge timed out after %ss", self._config.judge_timeout_seconds)
            return JudgeVerdict(
                score=NO_SCORE,
                reasoning=f"LLM judge timed out after {self._config.judge_timeout_seconds:g}s.",
                model=self.model,
            )
        except LLMGenerationError as exc:
            logger.warning("LLM judge request failed: %s", exc)
            return JudgeVerdict(score=NO_SCORE, reasoning=f"LLM judge error: {exc}", model=self.model)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Unexpected LLM judge failure")
            return JudgeVerdict(score=NO_SCORE, reasoning=f"LLM judge error: {exc}", model=self.model)

        return parse_judge_response(reply.text, reply.model or self.model)
