"""Normalization of the response shapes returned by chat-style generation endpoints."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional


class ResponseShape(str, Enum):
    MESSAGE_CONTENT = "message.content"
    CHOICES_MESSAGE_CONTENT = "choices[0].message.content"
    RESPONSE = "response"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class NormalizedResponse:
    """Tagged view of a generation payload; ``content`` is empty for UNKNOWN."""

    shape: ResponseShape
    content: str = ""
    model: Optional[str] = None

    def resolve_text(self) -> str:
        if self.shape is ResponseShape.UNKNOWN:
            return ""
        if self.shape in (
            ResponseShape.MESSAGE_CONTENT,
            ResponseShape.CHOICES_MESSAGE_CONTENT,
            ResponseShape.RESPONSE,
        ):
            return self.content.strip()
        raise ValueError(f"Unhandled response shape: {self.shape}")


def _non_empty_string(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value
    return None


def _message_content(payload: dict) -> Optional[str]:
    message = payload.get("message")
    if not isinstance(message, dict):
        return None
    return _non_empty_string(message.get("content"))


def _choices_message_content(payload: dict) -> Optional[str]:
    choices = payload.get("choices")
    if not isinstance(choices, list) or not choices:
        return None
    first = choices[0]
    if not isinstance(first, dict):
        return None
    message = first.get("message")
    if not isinstance(message, dict):
        return None
    return _non_empty_string(message.get("content"))


def _bare_response(payload: dict) -> Optional[str]:
    return _non_empty_string(payload.get("response"))


# Probed in priority order; the first non-empty string wins.
_SHAPE_READERS = (
    (ResponseShape.MESSAGE_CONTENT, _message_content),
    (ResponseShape.CHOICES_MESSAGE_CONTENT, _choices_message_content),
    (ResponseShape.RESPONSE, _bare_response),
)


def normalize_response(payload: Any) -> NormalizedResponse:
    """Classify a decoded JSON payload into one of the known response shapes."""
    if not isinstance(payload, dict):
        return NormalizedResponse(shape=ResponseShape.UNKNOWN)

    model = _non_empty_string(payload.get("model"))
    for shape, read in _SHAPE_READERS:
        content = read(payload)
        if content is not None:
            return NormalizedResponse(shape=shape, content=content, model=model)
    return NormalizedResponse(shape=ResponseShape.UNKNOWN, model=model)
