"""History summarization."""

from .prompts import build_system_prompt, build_tier_prompt, format_transcript
from .providers import CompletionProvider, HttpCompletionProvider
from .service import SummarizationService, max_tokens_for_tier, select_tier

__all__ = [
    "CompletionProvider",
    "HttpCompletionProvider",
    "SummarizationService",
    "build_system_prompt",
    "build_tier_prompt",
    "format_transcript",
    "max_tokens_for_tier",
    "select_tier",
]
