"""Routing engine: the single entry point the rest of the application uses.

The engine owns the current backend selection and the credentials store.
For every call it takes a snapshot of the store, builds the attempt plan,
turns the plan into adapters and hands them to the rotation controller.
A settings change made while a call is in flight never affects that call.
"""
import asyncio
from contextlib import aclosing
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterator, Callable, Dict, List, Optional, Union

from core.config import Config, get_settings
from core.errors import ProviderError
from core.logging import logger
from routing.adapters.custom import CustomEndpointProvider
from routing.adapters.providers import BaseProvider, OllamaProvider, create_provider
from routing.adapters.speculative import SpeculativeProvider
from routing.credentials import CredentialSnapshot, CredentialStore
from routing.curl import CustomEndpointTemplate, compile_template
from routing.plan import (
    CLAUDE,
    CUSTOM_PREFIX,
    GEMINI_FLASH,
    GEMINI_PRO,
    GROQ,
    OLLAMA,
    OPENAI,
    Capabilities,
    Family,
    ProviderDescriptor,
    Selection,
    SelectionKind,
    build_attempt_plan,
    custom_identity,
)
from routing.rotation import NO_PROVIDERS_MESSAGE, RotationController
from routing.summary import MeetingSummarizer
from routing.types import GenerationRequest, StreamSession
from routing.validation import ResponseValidator

# Short codes offered by the model picker.
MODEL_ALIASES: Dict[str, str] = {
    "gemini": GEMINI_FLASH,
    "gemini-flash": GEMINI_FLASH,
    "gemini-pro": GEMINI_PRO,
    "gpt-4o": OPENAI,
    "openai": OPENAI,
    "claude": CLAUDE,
    "llama": GROQ,
    "groq": GROQ,
}
OLLAMA_PREFIX = "ollama-"

# identity -> (credential backend, vision)
CLOUD_PROVIDERS = {
    GEMINI_FLASH: ("gemini", True),
    GEMINI_PRO: ("gemini", True),
    GROQ: ("groq", False),
    OPENAI: ("openai", True),
    CLAUDE: ("claude", True),
}

ProviderFactory = Callable[[ProviderDescriptor, CredentialSnapshot], BaseProvider]


@dataclass
class ConnectionStatus:
    success: bool
    error: Optional[str] = None


class RoutingEngine:
    """Façade over plan building, adapters and rotation.

    Args:
        config: Loaded settings; ``get_settings()`` when omitted.
        credentials: Key and endpoint store; seeded from the environment when omitted.
        controller: Rotation controller; built from ``config.routing.retry`` when omitted.
        provider_factory: Turns a plan entry into an adapter. Tests swap in fakes here.
        sleep: Awaitable used for every backoff delay.
    """

    def __init__(
        self,
        config: Optional[Config] = None,
        credentials: Optional[CredentialStore] = None,
        controller: Optional[RotationController] = None,
        provider_factory: Optional[ProviderFactory] = None,
        sleep=asyncio.sleep,
    ):
        self.config = config or get_settings()
        self.credentials = credentials or CredentialStore.from_settings(self.config.app)
        self.validator = ResponseValidator()
        self.controller = controller or RotationController.from_config(
            self.config.routing.retry, self.validator, sleep=sleep
        )
        self.provider_factory = provider_factory or self.create_adapter
        self._sleep = sleep
        self._selection = Selection.cloud_default()

    # --- Plan building ---

    def _model_for(self, identity: str) -> str:
        models = self.config.routing.models
        return {
            GEMINI_FLASH: models.gemini_flash,
            GEMINI_PRO: models.gemini_pro,
            GROQ: models.groq,
            OPENAI: models.openai,
            CLAUDE: models.claude,
        }[identity]

    def describe(self, snapshot: CredentialSnapshot) -> List[ProviderDescriptor]:
        """Every backend the engine knows about, configured or not."""
        descriptors = [
            ProviderDescriptor(
                identity=identity,
                family=Family(backend),
                model_identifier=self._model_for(identity),
                capabilities=Capabilities(supports_vision=vision),
                is_configured=snapshot.has_key(backend),
            )
            for identity, (backend, vision) in CLOUD_PROVIDERS.items()
        ]
        descriptors.append(ProviderDescriptor(
            identity=OLLAMA,
            family=Family.LOCAL,
            model_identifier=snapshot.ollama_model,
            capabilities=Capabilities(supports_vision=False),
            is_configured=True,
        ))
        for template in snapshot.endpoints.values():
            descriptors.append(ProviderDescriptor(
                identity=custom_identity(template.id),
                family=Family.CUSTOM,
                model_identifier=template.display_name,
                capabilities=Capabilities(supports_vision=True),
                is_configured=True,
            ))
        return descriptors

    def plan(self, request: GenerationRequest, snapshot: Optional[CredentialSnapshot] = None) -> List[ProviderDescriptor]:
        snapshot = snapshot or self.credentials.snapshot()
        return build_attempt_plan(request.has_image, self.describe(snapshot), self._selection)

    def create_adapter(self, descriptor: ProviderDescriptor, snapshot: CredentialSnapshot) -> BaseProvider:
        routing = self.config.routing
        common = {"generation": routing.generation, "timeout": self.config.app.REQUEST_TIMEOUT}

        if descriptor.family == Family.CUSTOM:
            template = snapshot.endpoints[descriptor.identity[len(CUSTOM_PREFIX):]]
            return CustomEndpointProvider(template, **common)
        if descriptor.family == Family.LOCAL:
            return create_provider(OLLAMA, model=snapshot.ollama_model, base_url=snapshot.ollama_url, **common)

        provider = self._cloud_adapter(descriptor.identity, snapshot)
        if descriptor.identity == GEMINI_FLASH:
            backup = self._cloud_adapter(GEMINI_PRO, snapshot)
            return SpeculativeProvider(provider, backup, self.validator, routing.retry.stream_chunk_size)
        return provider

    def _cloud_adapter(self, identity: str, snapshot: CredentialSnapshot) -> BaseProvider:
        backend, _ = CLOUD_PROVIDERS[identity]
        endpoints = self.config.routing.endpoints
        base_url = {
            "gemini": endpoints.gemini,
            "groq": endpoints.groq,
            "openai": endpoints.openai,
            "claude": endpoints.anthropic,
        }[backend]
        return create_provider(
            backend,
            model=self._model_for(identity),
            api_key=snapshot.key(backend),
            base_url=base_url,
            generation=self.config.routing.generation,
            timeout=self.config.app.REQUEST_TIMEOUT,
        )

    def _providers_for(self, request: GenerationRequest) -> List[BaseProvider]:
        snapshot = self.credentials.snapshot()
        plan = self.plan(request, snapshot)
        logger.debug(f"Attempt plan: {[d.label for d in plan]}")
        return [self.provider_factory(descriptor, snapshot) for descriptor in plan]

    # --- Generation ---

    async def chat(
        self,
        message: str,
        image: Optional[Union[str, Path]] = None,
        context: Optional[str] = None,
        system_prompt_override: Optional[str] = None,
    ) -> str:
        request = GenerationRequest.build(message, image, context, system_prompt_override)
        return await self.controller.run_once(self._providers_for(request), request)

    async def stream_chat(
        self,
        message: str,
        image: Optional[Union[str, Path]] = None,
        context: Optional[str] = None,
        system_prompt_override: Optional[str] = None,
        session: Optional[StreamSession] = None,
    ) -> AsyncIterator[str]:
        request = GenerationRequest.build(message, image, context, system_prompt_override)
        providers = self._providers_for(request)
        async with aclosing(self.controller.run_stream(providers, request, session)) as fragments:
            async for fragment in fragments:
                yield fragment

    # --- Selection ---

    @property
    def selection(self) -> Selection:
        return self._selection

    def select_model(self, model_id: str) -> Selection:
        """Switch backends. Only ever changed by an explicit user action."""
        key = (model_id or "").strip()
        lowered = key.lower()
        if lowered in ("", "default", "auto"):
            selection = Selection.cloud_default()
        elif lowered in MODEL_ALIASES:
            selection = Selection.cloud(MODEL_ALIASES[lowered])
        elif lowered == OLLAMA:
            selection = Selection.local()
        elif lowered.startswith(OLLAMA_PREFIX):
            self.credentials.ollama_model = key[len(OLLAMA_PREFIX):]
            selection = Selection.local()
        elif self.credentials.get_endpoint(key) is not None:
            selection = Selection.custom(key)
        else:
            raise ValueError(f"Unknown model: {model_id}")

        self._selection = selection
        logger.info(f"Model switched to {self.current_provider}: {self.current_model}")
        return selection

    @property
    def current_provider(self) -> str:
        if self._selection.kind == SelectionKind.LOCAL:
            return "ollama"
        if self._selection.kind == SelectionKind.CUSTOM:
            return "custom"
        return "cloud"

    @property
    def current_model(self) -> str:
        kind, target = self._selection.kind, self._selection.target
        if kind == SelectionKind.LOCAL:
            return self.credentials.ollama_model
        if kind == SelectionKind.CUSTOM:
            template = self.credentials.get_endpoint(target[len(CUSTOM_PREFIX):])
            return template.display_name if template else target
        return self._model_for(target or GEMINI_FLASH)

    # --- Configuration surface ---

    def set_credential(self, backend: str, key: str) -> None:
        self.credentials.set_key(backend, key)

    def clear_credential(self, backend: str) -> None:
        self.credentials.clear_key(backend)

    def save_custom_endpoint(
        self,
        endpoint_id: str,
        display_name: str,
        raw_invocation: str,
        response_path: Optional[str] = None,
    ) -> CustomEndpointTemplate:
        """Compile and store a template. Raises ``TemplateCompileError`` on bad syntax."""
        template = compile_template(endpoint_id, display_name, raw_invocation, response_path)
        self.credentials.save_endpoint(template)
        return template

    def delete_custom_endpoint(self, endpoint_id: str) -> bool:
        removed = self.credentials.delete_endpoint(endpoint_id)
        if removed and self._selection == Selection.custom(endpoint_id):
            logger.info(f"Selected custom endpoint {endpoint_id} deleted, back to default model")
            self._selection = Selection.cloud_default()
        return removed

    # --- Extras ---

    async def test_connection(self) -> ConnectionStatus:
        """Check the first provider a text request would use."""
        request = GenerationRequest.build("Hello")
        providers = self._providers_for(request)
        if not providers:
            return ConnectionStatus(success=False, error=NO_PROVIDERS_MESSAGE)
        provider = providers[0]
        try:
            text = await provider.generate_once(request)
        except ProviderError as e:
            logger.warning(f"Connection test against {provider.label} failed: {e}")
            return ConnectionStatus(success=False, error=str(e))
        if not (text or "").strip():
            return ConnectionStatus(success=False, error="Empty response")
        return ConnectionStatus(success=True)

    async def list_local_models(self) -> List[str]:
        snapshot = self.credentials.snapshot()
        return await OllamaProvider(snapshot.ollama_model, base_url=snapshot.ollama_url).list_models()

    async def summarize(self, system_prompt: str, context: str, groq_system_prompt: Optional[str] = None) -> str:
        """Meeting summary via the Groq, Flash, Pro ladder. Raises ``SummaryGenerationError``."""
        snapshot = self.credentials.snapshot()
        configured = {d.identity for d in self.describe(snapshot) if d.is_configured}

        def adapter(identity: str) -> Optional[BaseProvider]:
            # Plain adapters: the ladder does its own retrying.
            return self._cloud_adapter(identity, snapshot) if identity in configured else None

        summarizer = MeetingSummarizer(
            flash=adapter(GEMINI_FLASH), pro=adapter(GEMINI_PRO), groq=adapter(GROQ), sleep=self._sleep
        )
        return await summarizer.summarize(system_prompt, context, groq_system_prompt)
