"""AI Provider Adapters for the backends the routing engine can call."""
import json
from abc import ABC, abstractmethod
from contextlib import aclosing
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx

from core.config import EndpointsConfig, GenerationConfig
from core.errors import ProviderError
from core.logging import logger
from routing.plan import CLAUDE, Family, GROQ, OLLAMA, OPENAI
from routing.types import GenerationRequest, StreamSession, encode_image

ANTHROPIC_VERSION = "2023-06-01"
TRUNCATED_MESSAGE = (
    "Response was truncated due to length limit. Please try a shorter question or break it into parts."
)


def parse_sse_line(line: str) -> Optional[str]:
    """Return the payload of a server-sent event ``data:`` line, None for any other line."""
    line = line.strip()
    if not line.startswith("data:"):
        return None
    return line[5:].strip()


async def aiter_sse_data(lines: AsyncIterator[str]) -> AsyncIterator[str]:
    async for line in lines:
        data = parse_sse_line(line)
        if not data:
            continue
        if data == "[DONE]":
            return
        yield data


class BaseProvider(ABC):
    """Base class for AI providers.

    Adapters hold only their configuration (model, credentials); every call is
    independent. Expected failures surface as :class:`ProviderError`.
    """

    name: str = "base"
    family: Family = Family.CUSTOM
    supports_vision: bool = False
    supports_streaming: bool = True

    def __init__(
        self,
        model: str,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        generation: Optional[GenerationConfig] = None,
        timeout: float = 60.0,
    ):
        self.model = model
        self.api_key = api_key
        self.base_url = (base_url or "").rstrip("/")
        self.generation = generation or GenerationConfig()
        self.timeout = timeout

    @property
    def label(self) -> str:
        return f"{self.name} ({self.model})"

    @abstractmethod
    async def generate_once(self, request: GenerationRequest) -> str:
        """Return the whole reply text; empty string if the backend sent none."""

    @abstractmethod
    def _stream(self, request: GenerationRequest) -> AsyncIterator[str]:
        """Yield reply fragments as the backend produces them."""

    async def generate_stream(
        self, request: GenerationRequest, session: Optional[StreamSession] = None
    ) -> AsyncIterator[str]:
        """Stream fragments, stopping between fragments once ``session`` is cancelled."""
        async with aclosing(self._stream(request)) as fragments:
            async for fragment in fragments:
                if session is not None and session.cancelled:
                    logger.info(f"{self.label} stream cancelled by caller")
                    return
                if fragment:
                    yield fragment

    # --- HTTP helpers ---

    def _status_error(self, status_code: int, body: str) -> ProviderError:
        snippet = (body or "").strip()[:300]
        return ProviderError(
            f"{self.name} API error {status_code}: {snippet}",
            provider=self.label,
            status_code=status_code,
        )

    def _transport_error(self, e: Exception) -> ProviderError:
        logger.error(f"{self.label} request failed: {e}")
        return ProviderError(f"{self.name} request failed: {e}", provider=self.label, transient=False)

    def _malformed(self, data: Any) -> ProviderError:
        return ProviderError(
            f"{self.name} returned an unexpected response shape: {str(data)[:120]}",
            provider=self.label,
            transient=False,
        )

    def _object(self, data: Any) -> Dict[str, Any]:
        """The reply body as a JSON object; an empty body counts as an empty object."""
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise self._malformed(data)
        return data

    def _text(self, value: Any, data: Any) -> str:
        if value is None:
            return ""
        if not isinstance(value, str):
            raise self._malformed(data)
        return value

    async def _post_json(self, url: str, payload: Dict[str, Any], headers: Optional[Dict[str, str]] = None) -> Any:
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            try:
                response = await client.post(url, headers=headers, json=payload)
                response.raise_for_status()
                return response.json()
            except httpx.HTTPStatusError as e:
                raise self._status_error(e.response.status_code, e.response.text) from e
            except (httpx.HTTPError, httpx.InvalidURL) as e:
                raise self._transport_error(e) from e
            except ValueError as e:
                raise ProviderError(
                    f"{self.name} returned malformed JSON: {e}", provider=self.label, transient=False
                ) from e

    async def _stream_lines(
        self, url: str, payload: Dict[str, Any], headers: Optional[Dict[str, str]] = None
    ) -> AsyncIterator[str]:
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            try:
                async with client.stream("POST", url, headers=headers, json=payload) as response:
                    if response.is_error:
                        body = (await response.aread()).decode("utf-8", "replace")
                        raise self._status_error(response.status_code, body)
                    async for line in response.aiter_lines():
                        yield line
            except (httpx.HTTPError, httpx.InvalidURL) as e:
                raise self._transport_error(e) from e

    async def _stream_json_events(
        self, url: str, payload: Dict[str, Any], headers: Optional[Dict[str, str]] = None
    ) -> AsyncIterator[Any]:
        async with aclosing(self._stream_lines(url, payload, headers)) as lines:
            async for data in aiter_sse_data(lines):
                try:
                    yield json.loads(data)
                except json.JSONDecodeError:
                    logger.debug(f"{self.label} skipped malformed stream event: {data[:80]}")


class GeminiProvider(BaseProvider):
    """Google Gemini REST provider (Flash and Pro)."""

    name = "gemini"
    family = Family.GEMINI
    supports_vision = True

    def __init__(self, model: str, api_key: Optional[str] = None, base_url: Optional[str] = None, **kwargs):
        super().__init__(model, api_key, base_url or EndpointsConfig().gemini, **kwargs)

    def _headers(self) -> Dict[str, str]:
        return {"x-goog-api-key": self.api_key or "", "Content-Type": "application/json"}

    def _payload(self, request: GenerationRequest) -> Dict[str, Any]:
        parts: List[Dict[str, Any]] = [{"text": request.combined_prompt(self.generation.system_prompt)}]
        if request.image is not None:
            image = encode_image(request.image, provider=self.label)
            parts.append({"inline_data": {"mime_type": image.mime_type, "data": image.data}})
        return {
            "contents": [{"role": "user", "parts": parts}],
            "generationConfig": {
                "maxOutputTokens": self.generation.gemini_max_output_tokens,
                "temperature": self.generation.temperature,
            },
        }

    def _first_candidate(self, data: Any) -> Dict[str, Any]:
        candidates = self._object(data).get("candidates") or []
        if not isinstance(candidates, list):
            raise self._malformed(data)
        if not candidates:
            return {}
        return self._object(candidates[0])

    def _candidate_text(self, data: Any) -> str:
        content = self._first_candidate(data).get("content") or {}
        if isinstance(content, str):
            return content
        if not isinstance(content, dict):
            raise self._malformed(data)
        parts = content.get("parts") or []
        if not isinstance(parts, list):
            raise self._malformed(data)
        return "".join(
            part["text"] for part in parts if isinstance(part, dict) and isinstance(part.get("text"), str)
        )

    async def generate_once(self, request: GenerationRequest) -> str:
        logger.info(f"Calling {self.label}...")
        data = await self._post_json(
            f"{self.base_url}/models/{self.model}:generateContent", self._payload(request), self._headers()
        )
        text = self._candidate_text(data)
        if not text.strip():
            reason = self._first_candidate(data).get("finishReason")
            if reason and reason != "STOP":
                logger.warning(f"{self.label} generation stopped with reason: {reason}")
            if reason == "MAX_TOKENS":
                return TRUNCATED_MESSAGE
            return ""
        return text

    async def _stream(self, request: GenerationRequest) -> AsyncIterator[str]:
        url = f"{self.base_url}/models/{self.model}:streamGenerateContent?alt=sse"
        async with aclosing(self._stream_json_events(url, self._payload(request), self._headers())) as events:
            async for event in events:
                if isinstance(event, dict) and "error" in event:
                    error = event["error"] if isinstance(event["error"], dict) else {"message": event["error"]}
                    raise ProviderError(
                        f"gemini stream error: {error.get('message', error)}",
                        provider=self.label,
                        status_code=error.get("code"),
                    )
                text = self._candidate_text(event)
                if text:
                    yield text


class OpenAICompatibleProvider(BaseProvider):
    """Chat-completions wire format shared by OpenAI and Groq."""

    token_param = "max_tokens"

    def _headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"}

    @abstractmethod
    def _messages(self, request: GenerationRequest) -> List[Dict[str, Any]]:
        """Chat messages for the request, in this backend's layout."""

    def _payload(self, request: GenerationRequest, stream: bool) -> Dict[str, Any]:
        payload = {
            "model": self.model,
            "messages": self._messages(request),
            "temperature": self.generation.temperature,
            self.token_param: self.generation.max_tokens,
        }
        if stream:
            payload["stream"] = True
        return payload

    async def generate_once(self, request: GenerationRequest) -> str:
        logger.info(f"Calling {self.label}...")
        data = await self._post_json(
            f"{self.base_url}/chat/completions", self._payload(request, stream=False), self._headers()
        )
        choices = self._object(data).get("choices") or []
        if not isinstance(choices, list):
            raise self._malformed(data)
        if not choices:
            return ""
        message = self._object(self._object(choices[0]).get("message"))
        return self._text(message.get("content"), data)

    async def _stream(self, request: GenerationRequest) -> AsyncIterator[str]:
        url = f"{self.base_url}/chat/completions"
        async with aclosing(self._stream_json_events(url, self._payload(request, stream=True), self._headers())) as events:
            async for event in events:
                if isinstance(event, dict) and event.get("error"):
                    raise ProviderError(f"{self.name} stream error: {event['error']}", provider=self.label)
                choices = self._object(event).get("choices") or []
                if not isinstance(choices, list):
                    raise self._malformed(event)
                if choices:
                    delta = self._object(self._object(choices[0]).get("delta"))
                    content = self._text(delta.get("content"), event)
                    if content:
                        yield content


class OpenAIProvider(OpenAICompatibleProvider):
    """OpenAI API provider with separate system and user messages."""

    name = OPENAI
    family = Family.OPENAI
    supports_vision = True
    token_param = "max_completion_tokens"

    def __init__(self, model: str, api_key: Optional[str] = None, base_url: Optional[str] = None, **kwargs):
        super().__init__(model, api_key, base_url or EndpointsConfig().openai, **kwargs)

    def _messages(self, request: GenerationRequest) -> List[Dict[str, Any]]:
        messages: List[Dict[str, Any]] = [
            {"role": "system", "content": request.system_prompt(self.generation.system_prompt)}
        ]
        if request.image is not None:
            image = encode_image(request.image, provider=self.label)
            messages.append({
                "role": "user",
                "content": [
                    {"type": "text", "text": request.user_content()},
                    {"type": "image_url", "image_url": {"url": image.data_url}},
                ],
            })
        else:
            messages.append({"role": "user", "content": request.user_content()})
        return messages


class GroqProvider(OpenAICompatibleProvider):
    """Groq provider. Text only; the whole prompt goes in one user message."""

    name = GROQ
    family = Family.GROQ
    supports_vision = False

    def __init__(self, model: str, api_key: Optional[str] = None, base_url: Optional[str] = None, **kwargs):
        super().__init__(model, api_key, base_url or EndpointsConfig().groq, **kwargs)

    def _messages(self, request: GenerationRequest) -> List[Dict[str, Any]]:
        return [{"role": "user", "content": request.combined_prompt(self.generation.system_prompt)}]


class AnthropicProvider(BaseProvider):
    """Anthropic Messages API provider (Claude)."""

    name = CLAUDE
    family = Family.CLAUDE
    supports_vision = True

    def __init__(self, model: str, api_key: Optional[str] = None, base_url: Optional[str] = None, **kwargs):
        super().__init__(model, api_key, base_url or EndpointsConfig().anthropic, **kwargs)

    def _headers(self) -> Dict[str, str]:
        return {
            "x-api-key": self.api_key or "",
            "anthropic-version": ANTHROPIC_VERSION,
            "Content-Type": "application/json",
        }

    def _payload(self, request: GenerationRequest, stream: bool) -> Dict[str, Any]:
        content: List[Dict[str, Any]] = []
        if request.image is not None:
            image = encode_image(request.image, provider=self.label)
            content.append({
                "type": "image",
                "source": {"type": "base64", "media_type": image.mime_type, "data": image.data},
            })
        content.append({"type": "text", "text": request.user_content()})
        payload = {
            "model": self.model,
            "max_tokens": self.generation.max_tokens,
            "temperature": self.generation.temperature,
            "system": request.system_prompt(self.generation.system_prompt),
            "messages": [{"role": "user", "content": content}],
        }
        if stream:
            payload["stream"] = True
        return payload

    async def generate_once(self, request: GenerationRequest) -> str:
        logger.info(f"Calling {self.label}...")
        data = await self._post_json(f"{self.base_url}/messages", self._payload(request, stream=False), self._headers())
        blocks = self._object(data).get("content") or []
        if not isinstance(blocks, list):
            raise self._malformed(data)
        for block in blocks:
            if isinstance(block, dict) and block.get("type") == "text":
                return self._text(block.get("text"), data)
        return ""

    async def _stream(self, request: GenerationRequest) -> AsyncIterator[str]:
        url = f"{self.base_url}/messages"
        async with aclosing(self._stream_json_events(url, self._payload(request, stream=True), self._headers())) as events:
            async for event in events:
                if not isinstance(event, dict):
                    continue
                if event.get("type") == "error":
                    error = event.get("error") if isinstance(event.get("error"), dict) else {}
                    raise ProviderError(
                        f"claude stream error: {error.get('type')}: {error.get('message')}",
                        provider=self.label,
                        transient=True if error.get("type") == "overloaded_error" else None,
                    )
                delta = event.get("delta") if isinstance(event.get("delta"), dict) else {}
                if event.get("type") == "content_block_delta" and delta.get("type") == "text_delta":
                    text = self._text(delta.get("text"), event)
                    if text:
                        yield text


class OllamaProvider(BaseProvider):
    """Ollama local model provider."""

    name = OLLAMA
    family = Family.LOCAL
    supports_vision = False

    def __init__(self, model: str, api_key: Optional[str] = None, base_url: Optional[str] = None, **kwargs):
        # Ollama doesn't need API key
        super().__init__(model, None, base_url or "http://localhost:11434", **kwargs)

    def _prompt(self, request: GenerationRequest) -> str:
        system = request.system_prompt(self.generation.system_prompt)
        if request.conversation_context:
            return f"SYSTEM: {system}\nCONTEXT: {request.conversation_context}\nUSER: {request.message}"
        return f"SYSTEM: {system}\nUSER: {request.message}"

    def _payload(self, request: GenerationRequest, stream: bool) -> Dict[str, Any]:
        return {
            "model": self.model,
            "prompt": self._prompt(request),
            "stream": stream,
            "options": {"temperature": 0.7, "top_p": 0.9},
        }

    def _transport_error(self, e: Exception) -> ProviderError:
        logger.error(f"Ollama API error: {e}")
        return ProviderError(
            f"Failed to connect to Ollama: {e}. Make sure Ollama is running on {self.base_url}",
            provider=self.label,
            transient=False,
        )

    async def generate_once(self, request: GenerationRequest) -> str:
        data = await self._post_json(f"{self.base_url}/api/generate", self._payload(request, stream=False))
        return self._text(self._object(data).get("response"), data)

    async def _stream(self, request: GenerationRequest) -> AsyncIterator[str]:
        url = f"{self.base_url}/api/generate"
        async with aclosing(self._stream_lines(url, self._payload(request, stream=True))) as lines:
            async for line in lines:
                if not line.strip():
                    continue
                try:
                    event = json.loads(line)
                except json.JSONDecodeError:
                    continue
                if not isinstance(event, dict):
                    raise self._malformed(event)
                if event.get("error"):
                    raise ProviderError(f"ollama error: {event['error']}", provider=self.label)
                if event.get("response"):
                    yield event["response"]
                if event.get("done"):
                    return

    async def list_models(self) -> List[str]:
        """Names of the models installed on the Ollama server; empty if unreachable."""
        try:
            async with httpx.AsyncClient(timeout=10.0) as client:
                response = await client.get(f"{self.base_url}/api/tags")
                response.raise_for_status()
                data = response.json()
        except (httpx.HTTPError, httpx.InvalidURL, ValueError) as e:
            logger.warning(f"Error fetching Ollama models: {e}")
            return []
        models = data.get("models") if isinstance(data, dict) else None
        if not isinstance(models, list):
            logger.warning(f"Unexpected Ollama model list: {str(data)[:120]}")
            return []
        return [m["name"] for m in models if isinstance(m, dict) and m.get("name")]

    async def is_available(self) -> bool:
        try:
            async with httpx.AsyncClient(timeout=5.0) as client:
                response = await client.get(f"{self.base_url}/api/tags")
                return response.is_success
        except (httpx.HTTPError, httpx.InvalidURL):
            return False


# Provider factory
def create_provider(provider_type: str, **kwargs) -> BaseProvider:
    """Create a provider instance by type."""
    providers = {
        "gemini": GeminiProvider,
        GROQ: GroqProvider,
        OPENAI: OpenAIProvider,
        CLAUDE: AnthropicProvider,
        "anthropic": AnthropicProvider,
        OLLAMA: OllamaProvider,
    }

    provider_class = providers.get(provider_type.lower())
    if not provider_class:
        raise ValueError(f"Unknown provider type: {provider_type}")

    return provider_class(**kwargs)
