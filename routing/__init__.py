"""Generation routing engine for the meeting copilot.

Typical use::

    engine = RoutingEngine()
    answer = await engine.chat("What did they just ask?", context=transcript)
"""

from __future__ import annotations

from .engine import ConnectionStatus, RoutingEngine
from .rotation import NO_PROVIDERS_MESSAGE, UNAVAILABLE_MESSAGE, RotationController
from .types import GenerationRequest, StreamSession

__all__ = [
    "ConnectionStatus",
    "GenerationRequest",
    "NO_PROVIDERS_MESSAGE",
    "RotationController",
    "RoutingEngine",
    "StreamSession",
    "UNAVAILABLE_MESSAGE",
]
