"""LLM helpers for priorauth-eval."""

from .payloads import NormalizedResponse, ResponseShape, normalize_response
from .text_client import ChatReply, LLMGenerationError, LLMTimeoutError, TextLLMClient

__all__ = [
    "ChatReply",
    "LLMGenerationError",
    "LLMTimeoutError",
    "NormalizedResponse",
    "ResponseShape",
    "TextLLMClient",
    "normalize_response",
]
