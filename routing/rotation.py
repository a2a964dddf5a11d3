"""Retry/rotation controller.

Drives a request through an ordered list of adapters: every adapter in
order, up to ``max_rotations`` full passes, with a linear backoff between
passes. The first reply that passes the validator ends the whole run.
Individual failures are logged and swallowed; callers only ever receive
text.
"""
import asyncio
from contextlib import aclosing
from typing import AsyncIterator, Awaitable, Callable, Optional, Sequence, Tuple

from core.config import RetryConfig
from core.errors import ProviderError
from core.logging import logger
from routing.adapters.providers import BaseProvider
from routing.types import GenerationRequest, StreamSession
from routing.validation import FenceStripper, ResponseValidator

NO_PROVIDERS_MESSAGE = "No AI providers configured. Please add at least one API key in Settings."
UNAVAILABLE_MESSAGE = "All AI services are currently unavailable. Please check your API keys and try again."

Sleep = Callable[[float], Awaitable[None]]


class RotationController:
    def __init__(
        self,
        validator: Optional[ResponseValidator] = None,
        max_rotations: int = 3,
        backoff_ms: int = 1000,
        validation_window: int = 64,
        sleep: Sleep = asyncio.sleep,
    ):
        self.validator = validator or ResponseValidator()
        self.max_rotations = max_rotations
        self.backoff_ms = backoff_ms
        self.validation_window = validation_window
        self._sleep = sleep

    @classmethod
    def from_config(
        cls, retry: RetryConfig, validator: Optional[ResponseValidator] = None, sleep: Sleep = asyncio.sleep
    ) -> "RotationController":
        return cls(
            validator=validator,
            max_rotations=retry.max_rotations,
            backoff_ms=retry.backoff_ms,
            validation_window=retry.stream_validation_window,
            sleep=sleep,
        )

    def backoff_delay_ms(self, rotation: int) -> int:
        """Delay before a rotation; the first one starts immediately."""
        return self.backoff_ms * rotation

    async def _backoff(self, rotation: int) -> None:
        delay = self.backoff_delay_ms(rotation)
        if delay > 0:
            logger.info(f"Rotation {rotation + 1}/{self.max_rotations}: backing off {delay}ms")
            await self._sleep(delay / 1000)

    def _log_attempt(self, provider: BaseProvider, rotation: int) -> None:
        logger.info(f"Attempting {provider.label} (rotation {rotation + 1}/{self.max_rotations})")

    async def run_once(self, providers: Sequence[BaseProvider], request: GenerationRequest) -> str:
        if not providers:
            logger.warning("No eligible providers for this request")
            return NO_PROVIDERS_MESSAGE

        for rotation in range(self.max_rotations):
            await self._backoff(rotation)
            for provider in providers:
                self._log_attempt(provider, rotation)
                try:
                    text = self.validator.clean(await provider.generate_once(request), provider.label)
                except ProviderError as e:
                    logger.warning(f"{provider.label} failed [{e.kind}]: {e}")
                    continue
                except Exception as e:
                    logger.error(f"{provider.label} failed unexpectedly: {e}", exc_info=True)
                    continue
                logger.info(f"{provider.label} answered ({len(text)} chars)")
                return text

        logger.error(f"All {len(providers)} providers failed after {self.max_rotations} rotations")
        return UNAVAILABLE_MESSAGE

    async def run_stream(
        self,
        providers: Sequence[BaseProvider],
        request: GenerationRequest,
        session: Optional[StreamSession] = None,
    ) -> AsyncIterator[str]:
        """Stream the first attempt whose opening passes validation.

        Each attempt is held back until ``validation_window`` characters (or
        the end of the stream) have arrived. An attempt that fails before
        that point is discarded and the next provider is tried; once output
        has been released, a failure ends the stream instead of rotating.
        Code fences are stripped as the text passes, so the joined output
        matches what ``run_once`` returns for the same reply.
        """
        if not providers:
            logger.warning("No eligible providers for this request")
            yield NO_PROVIDERS_MESSAGE
            return

        session = session or StreamSession()
        for rotation in range(self.max_rotations):
            await self._backoff(rotation)
            for provider in providers:
                if session.cancelled:
                    return
                self._log_attempt(provider, rotation)
                session.provider = provider.label
                async with aclosing(provider.generate_stream(request, session)) as fragments:
                    try:
                        head, finished = await self._open(provider, fragments)
                    except ProviderError as e:
                        logger.warning(f"{provider.label} stream failed [{e.kind}]: {e}")
                        continue
                    except Exception as e:
                        logger.error(f"{provider.label} stream failed unexpectedly: {e}", exc_info=True)
                        continue
                    if session.cancelled:
                        return
                    if finished:
                        yield head
                        return
                    fences = FenceStripper()
                    text = fences.feed(head)
                    if text:
                        yield text
                    try:
                        async for fragment in fragments:
                            if session.cancelled:
                                return
                            text = fences.feed(fragment)
                            if text:
                                yield text
                    except ProviderError as e:
                        logger.error(f"{provider.label} stream broke after output started: {e}")
                    except Exception as e:
                        logger.error(f"{provider.label} stream broke after output started: {e}", exc_info=True)
                    tail = fences.close()
                    if tail:
                        yield tail
                    return

        logger.error(f"All {len(providers)} providers failed after {self.max_rotations} rotations")
        yield UNAVAILABLE_MESSAGE

    async def _open(self, provider: BaseProvider, fragments: AsyncIterator[str]) -> Tuple[str, bool]:
        """Buffer the opening of a stream and validate it.

        Returns the raw opening to release and whether the stream already
        ended; a finished stream comes back fully cleaned. A fenced opening is
        held until its fence line is complete.
        """
        buffer = []
        size = 0
        async for fragment in fragments:
            buffer.append(fragment)
            size += len(fragment)
            if size >= self.validation_window:
                head = "".join(buffer)
                opening = head.lstrip()
                if opening.startswith("```") and "\n" not in opening:
                    continue
                self.validator.clean(head, provider.label)
                return head, False
        return self.validator.clean("".join(buffer), provider.label), True
