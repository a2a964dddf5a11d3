"""Speculative retry wrapper for the primary cloud model.

``SpeculativeProvider`` composes two adapters of the same family, a fast
model and a slower, stronger backup, behind the ordinary adapter
interface. The first call goes to the fast model alone. If that fails or
comes back unusable, a retry of the fast model and a first call of the
backup run concurrently and the first valid reply wins. When both
branches fail, the fast model gets one last sequential try before the
error reaches the rotation controller.
"""
import asyncio
from contextlib import aclosing
from typing import AsyncIterator, Iterable, Optional, Set

from core.errors import ProviderError
from core.logging import logger
from routing.adapters.providers import BaseProvider
from routing.types import GenerationRequest
from routing.validation import ResponseValidator


class SpeculativeProvider(BaseProvider):

    def __init__(
        self,
        fast: BaseProvider,
        backup: BaseProvider,
        validator: Optional[ResponseValidator] = None,
        chunk_size: int = 10,
    ):
        super().__init__(fast.model, fast.api_key, fast.base_url, fast.generation, fast.timeout)
        self.fast = fast
        self.backup = backup
        self.validator = validator or ResponseValidator()
        self.chunk_size = chunk_size
        self.name = fast.name
        self.family = fast.family
        self.supports_vision = fast.supports_vision and backup.supports_vision
        # Race losers keep running; hold a reference until they settle.
        self._abandoned: Set[asyncio.Task] = set()

    async def _attempt(self, provider: BaseProvider, request: GenerationRequest) -> Optional[str]:
        """One validated call; None when it failed or the reply was unusable."""
        try:
            return self.validator.clean(await provider.generate_once(request), provider.label)
        except ProviderError as e:
            logger.warning(f"{provider.label} speculative branch failed [{e.kind}]: {e}")
            return None
        except Exception as e:
            logger.error(f"{provider.label} speculative branch failed unexpectedly: {e}", exc_info=True)
            return None

    async def race(self, request: GenerationRequest) -> Optional[str]:
        """Retry the fast model and start the backup together; first valid reply wins."""
        logger.info(f"Racing {self.fast.label} retry against {self.backup.label}")
        retry = asyncio.create_task(self._attempt(self.fast, request))
        backup = asyncio.create_task(self._attempt(self.backup, request))
        pending = {retry, backup}
        try:
            while pending:
                done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
                # On a tie the fast model's answer is preferred.
                for task in sorted(done, key=lambda t: t is not retry):
                    text = task.result()
                    if text is not None:
                        winner = self.fast if task is retry else self.backup
                        logger.info(f"Speculative race won by {winner.label}")
                        self._abandon(pending)
                        return text
        except BaseException:
            for task in (retry, backup):
                task.cancel()
            raise
        return None

    def _abandon(self, tasks: Iterable[asyncio.Task]) -> None:
        for task in tasks:
            self._abandoned.add(task)
            task.add_done_callback(self._settle)

    def _settle(self, task: asyncio.Task) -> None:
        self._abandoned.discard(task)
        if task.cancelled():
            return
        if task.exception() is not None:
            logger.warning(f"Abandoned speculative branch raised: {task.exception()}")
        elif task.result() is not None:
            logger.debug("Abandoned speculative branch finished with a valid reply (discarded)")

    async def recover(self, request: GenerationRequest) -> str:
        """Everything after a failed first call: the race, then one final fast retry."""
        text = await self.race(request)
        if text is not None:
            return text
        logger.warning(f"Both speculative branches failed, final retry of {self.fast.label}")
        return self.validator.clean(await self.fast.generate_once(request), self.fast.label)

    async def generate_once(self, request: GenerationRequest) -> str:
        try:
            return self.validator.clean(await self.fast.generate_once(request), self.fast.label)
        except ProviderError as e:
            logger.warning(f"{self.fast.label} first attempt failed [{e.kind}]: {e}")
        except Exception as e:
            logger.error(f"{self.fast.label} first attempt failed unexpectedly: {e}", exc_info=True)
        return await self.recover(request)

    async def _stream(self, request: GenerationRequest) -> AsyncIterator[str]:
        started = False
        blank = []
        try:
            async with aclosing(self.fast.generate_stream(request)) as fragments:
                async for fragment in fragments:
                    if not started:
                        if not fragment.strip():
                            blank.append(fragment)
                            continue
                        started = True
                        fragment = "".join(blank) + fragment
                    yield fragment
        except ProviderError as e:
            if started:
                raise
            logger.warning(f"{self.fast.label} stream failed before any output [{e.kind}]: {e}")
        except Exception as e:
            if started:
                raise
            logger.error(f"{self.fast.label} stream failed before any output: {e}", exc_info=True)
        if started:
            return

        text = await self.recover(request)
        for i in range(0, len(text), self.chunk_size):
            yield text[i:i + self.chunk_size]
