"""Meeting summary generation with a fixed fallback ladder.

1. Groq, when configured and the transcript fits its context window.
2. Gemini Flash, 3 attempts with linear backoff.
3. Gemini Pro, 5 attempts with exponential backoff.
"""
import asyncio
import math
from typing import Optional

from core.errors import ProviderError, SummaryGenerationError
from core.logging import logger
from routing.adapters.providers import BaseProvider
from routing.types import GenerationRequest
from routing.validation import strip_code_fences

GROQ_TOKEN_LIMIT = 100_000
GROQ_TIMEOUT = 45.0
FLASH_ATTEMPTS = 3
FLASH_TIMEOUT = 45.0
PRO_ATTEMPTS = 5
PRO_TIMEOUT = 60.0


def estimate_tokens(text: str) -> int:
    """Crude token estimate: four characters per token."""
    return math.ceil(len(text or "") / 4)


class MeetingSummarizer:
    def __init__(
        self,
        flash: Optional[BaseProvider] = None,
        pro: Optional[BaseProvider] = None,
        groq: Optional[BaseProvider] = None,
        sleep=asyncio.sleep,
    ):
        self.flash = flash
        self.pro = pro
        self.groq = groq
        self._sleep = sleep

    async def _call(self, provider: BaseProvider, request: GenerationRequest, timeout: float) -> str:
        try:
            text = await asyncio.wait_for(provider.generate_once(request), timeout)
        except asyncio.TimeoutError as e:
            raise ProviderError(f"{provider.label} timed out after {timeout:.0f}s", provider=provider.label) from e
        cleaned = strip_code_fences(text)
        if not cleaned:
            raise ProviderError(f"{provider.label} returned an empty summary", provider=provider.label)
        return cleaned

    async def summarize(self, system_prompt: str, context: str, groq_system_prompt: Optional[str] = None) -> str:
        tokens = estimate_tokens(context)
        logger.info(f"Generating meeting summary, context length {len(context)} (~{tokens} tokens)")

        if self.groq is not None and tokens < GROQ_TOKEN_LIMIT:
            request = GenerationRequest(
                message=f"Context:\n{context}",
                system_prompt_override=groq_system_prompt or system_prompt,
            )
            try:
                text = await self._call(self.groq, request, GROQ_TIMEOUT)
                logger.info("Summary generated by Groq")
                return text
            except ProviderError as e:
                logger.warning(f"Groq summary failed: {e}. Falling back to Gemini")
        elif self.groq is not None:
            logger.info(f"Context too large for Groq ({tokens} tokens), skipping to Gemini")

        request = GenerationRequest(message=f"CONTEXT:\n{context}", system_prompt_override=system_prompt)

        if self.flash is not None:
            for attempt in range(1, FLASH_ATTEMPTS + 1):
                try:
                    text = await self._call(self.flash, request, FLASH_TIMEOUT)
                    logger.info(f"Summary generated by {self.flash.label} (attempt {attempt})")
                    return text
                except ProviderError as e:
                    logger.warning(f"{self.flash.label} summary attempt {attempt}/{FLASH_ATTEMPTS} failed: {e}")
                    if attempt < FLASH_ATTEMPTS:
                        await self._sleep(float(attempt))  # 1s, 2s

        if self.pro is not None:
            logger.warning("Flash exhausted, switching to Gemini Pro for the summary")
            for attempt in range(1, PRO_ATTEMPTS + 1):
                try:
                    text = await self._call(self.pro, request, PRO_TIMEOUT)
                    logger.info(f"Summary generated by {self.pro.label} (attempt {attempt})")
                    return text
                except ProviderError as e:
                    logger.warning(f"{self.pro.label} summary attempt {attempt}/{PRO_ATTEMPTS} failed: {e}")
                    if attempt < PRO_ATTEMPTS:
                        backoff_ms = 2000 * 2 ** (attempt - 1)
                        logger.info(f"Waiting {backoff_ms}ms before next summary retry")
                        await self._sleep(backoff_ms / 1000)

        raise SummaryGenerationError("Failed to generate meeting summary after all retries")
