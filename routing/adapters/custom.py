"""Provider backed by a user-defined curl template."""
import json
from typing import Any, AsyncIterator, Dict, Optional

import httpx

from core.errors import ProviderError
from core.logging import logger
from routing.adapters.providers import BaseProvider, parse_sse_line
from routing.curl import (
    PLACEHOLDER_CONTEXT,
    PLACEHOLDER_IMAGE_BASE64,
    PLACEHOLDER_PROMPT,
    PLACEHOLDER_SYSTEM_PROMPT,
    PLACEHOLDER_TEXT,
    PLACEHOLDER_USER_MESSAGE,
    CompiledRequest,
    CustomEndpointTemplate,
    extract_path,
    render,
)
from routing.plan import Family, custom_identity
from routing.types import GenerationRequest, encode_image


def parse_stream_payload(data: str) -> Optional[str]:
    """Best-effort text extraction from one streamed JSON event of unknown shape."""
    try:
        event = json.loads(data)
    except json.JSONDecodeError:
        return None
    if not isinstance(event, dict):
        return None
    choices = event.get("choices")
    if isinstance(choices, list) and choices and isinstance(choices[0], dict):
        choice_delta = choices[0].get("delta")
        content = choice_delta.get("content") if isinstance(choice_delta, dict) else None
        if isinstance(content, str) and content:
            return content
    delta = event.get("delta")
    if event.get("type") == "content_block_delta" and isinstance(delta, dict) and isinstance(delta.get("text"), str):
        return delta["text"] or None
    if isinstance(event.get("response"), str) and event["response"]:
        return event["response"]
    value = event.get("content") or event.get("text")
    return value if isinstance(value, str) and value else None


class CustomEndpointProvider(BaseProvider):
    """Runs a compiled :class:`CustomEndpointTemplate` as a backend."""

    family = Family.CUSTOM
    supports_vision = True

    def __init__(self, template: CustomEndpointTemplate, **kwargs):
        super().__init__(template.display_name, **kwargs)
        self.template = template
        self.name = custom_identity(template.id)

    def variables(self, request: GenerationRequest) -> Dict[str, str]:
        image_b64 = ""
        if request.image is not None:
            image_b64 = encode_image(request.image, provider=self.label).data
        combined = request.combined_prompt(self.generation.system_prompt)
        return {
            PLACEHOLDER_TEXT: combined,
            PLACEHOLDER_PROMPT: combined,
            PLACEHOLDER_SYSTEM_PROMPT: request.system_prompt(self.generation.system_prompt),
            PLACEHOLDER_USER_MESSAGE: request.message,
            PLACEHOLDER_CONTEXT: request.conversation_context or "",
            PLACEHOLDER_IMAGE_BASE64: image_b64,
        }

    def build_request(self, request: GenerationRequest) -> CompiledRequest:
        return render(self.template.compiled, self.variables(request))

    def _http_kwargs(self, rendered: CompiledRequest) -> Dict[str, Any]:
        kwargs: Dict[str, Any] = {"headers": rendered.headers}
        if rendered.body is not None:
            kwargs["content"] = json.dumps(rendered.body).encode("utf-8")
        return kwargs

    async def generate_once(self, request: GenerationRequest) -> str:
        rendered = self.build_request(request)
        logger.info(f"Calling custom endpoint {self.template.display_name}...")
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            try:
                response = await client.request(rendered.method, rendered.url, **self._http_kwargs(rendered))
                response.raise_for_status()
                payload = response.json()
            except httpx.HTTPStatusError as e:
                raise self._status_error(e.response.status_code, e.response.text) from e
            except (httpx.HTTPError, httpx.InvalidURL) as e:
                raise self._transport_error(e) from e
            except ValueError as e:
                raise ProviderError(
                    f"Custom endpoint {self.template.display_name} returned non-JSON body: {e}",
                    provider=self.label,
                    transient=False,
                ) from e
        return extract_path(payload, self.template.response_path)

    async def _stream(self, request: GenerationRequest) -> AsyncIterator[str]:
        rendered = self.build_request(request)
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            try:
                async with client.stream(rendered.method, rendered.url, **self._http_kwargs(rendered)) as response:
                    if response.is_error:
                        body = (await response.aread()).decode("utf-8", "replace")
                        raise self._status_error(response.status_code, body)
                    if "text/event-stream" in response.headers.get("content-type", ""):
                        async for line in response.aiter_lines():
                            data = parse_sse_line(line)
                            if not data:
                                continue
                            if data == "[DONE]":
                                return
                            text = parse_stream_payload(data)
                            if text:
                                yield text
                        return
                    # Plain JSON reply: the whole answer arrives at once.
                    raw = await response.aread()
            except (httpx.HTTPError, httpx.InvalidURL) as e:
                raise self._transport_error(e) from e
        try:
            payload = json.loads(raw)
        except ValueError as e:
            raise ProviderError(
                f"Custom endpoint {self.template.display_name} returned non-JSON body: {e}",
                provider=self.label,
                transient=False,
            ) from e
        yield extract_path(payload, self.template.response_path)
