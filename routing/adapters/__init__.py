"""Provider adapters: one per backend family, plus the composing wrappers.

Every adapter implements the same two calls, ``generate_once`` and
``generate_stream``, and reports expected failures as ``ProviderError``.
"""

from __future__ import annotations

from .custom import CustomEndpointProvider
from .providers import (
    AnthropicProvider,
    BaseProvider,
    GeminiProvider,
    GroqProvider,
    OllamaProvider,
    OpenAIProvider,
    create_provider,
)
from .speculative import SpeculativeProvider

__all__ = [
    "AnthropicProvider",
    "BaseProvider",
    "CustomEndpointProvider",
    "GeminiProvider",
    "GroqProvider",
    "OllamaProvider",
    "OpenAIProvider",
    "SpeculativeProvider",
    "create_provider",
]
