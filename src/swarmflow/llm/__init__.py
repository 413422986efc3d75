"""LLM provider interfaces."""

from .provider import (
    Generation,
    LanguageModel,
    OllamaProvider,
    PromptContext,
    StaticResponseProvider,
    generate_with_retry,
)

__all__ = [
    "Generation",
    "LanguageModel",
    "PromptContext",
    "StaticResponseProvider",
    "OllamaProvider",
    "generate_with_retry",
]
