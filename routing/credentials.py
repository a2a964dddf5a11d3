"""In-memory credentials/settings store read by the routing engine."""
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional

from core.config import AppSettings
from core.logging import logger
from routing.curl import CustomEndpointTemplate

BACKENDS = ("gemini", "groq", "openai", "claude")


@dataclass(frozen=True)
class CredentialSnapshot:
    """Read-only view of the store taken once per request."""
    keys: Mapping[str, str]
    ollama_url: str
    ollama_model: str
    endpoints: Mapping[str, CustomEndpointTemplate] = field(default_factory=dict)

    def has_key(self, backend: str) -> bool:
        return bool(self.keys.get(backend))

    def key(self, backend: str) -> Optional[str]:
        return self.keys.get(backend) or None


class CredentialStore:
    def __init__(
        self,
        keys: Optional[Dict[str, str]] = None,
        ollama_url: str = "http://localhost:11434",
        ollama_model: str = "llama3.2",
    ):
        self._keys: Dict[str, str] = {}
        self._endpoints: Dict[str, CustomEndpointTemplate] = {}
        self.ollama_url = ollama_url.rstrip("/")
        self.ollama_model = ollama_model
        for backend, key in (keys or {}).items():
            if key:
                self.set_key(backend, key)

    @classmethod
    def from_settings(cls, settings: AppSettings) -> "CredentialStore":
        return cls(
            keys={
                "gemini": settings.GEMINI_API_KEY,
                "groq": settings.GROQ_API_KEY,
                "openai": settings.OPENAI_API_KEY,
                "claude": settings.ANTHROPIC_API_KEY,
            },
            ollama_url=settings.OLLAMA_HOST,
            ollama_model=settings.OLLAMA_MODEL,
        )

    # --- API keys ---

    def set_key(self, backend: str, key: str) -> None:
        _check_backend(backend)
        key = (key or "").strip()
        if not key:
            raise ValueError(f"API key for {backend} cannot be empty")
        self._keys[backend] = key
        logger.info(f"{backend} API key updated")

    def clear_key(self, backend: str) -> None:
        _check_backend(backend)
        if self._keys.pop(backend, None) is not None:
            logger.info(f"{backend} API key cleared")

    def get_key(self, backend: str) -> Optional[str]:
        _check_backend(backend)
        return self._keys.get(backend)

    # --- Custom endpoints ---

    def save_endpoint(self, template: CustomEndpointTemplate) -> None:
        self._endpoints[template.id] = template
        logger.info(f"Custom endpoint saved: {template.display_name} ({template.id})")

    def delete_endpoint(self, endpoint_id: str) -> bool:
        removed = self._endpoints.pop(endpoint_id, None) is not None
        if removed:
            logger.info(f"Custom endpoint deleted: {endpoint_id}")
        return removed

    def get_endpoint(self, endpoint_id: str) -> Optional[CustomEndpointTemplate]:
        return self._endpoints.get(endpoint_id)

    def endpoints(self) -> List[CustomEndpointTemplate]:
        return list(self._endpoints.values())

    def snapshot(self) -> CredentialSnapshot:
        return CredentialSnapshot(
            keys=MappingProxyType(dict(self._keys)),
            ollama_url=self.ollama_url,
            ollama_model=self.ollama_model,
            endpoints=MappingProxyType(dict(self._endpoints)),
        )


def _check_backend(backend: str) -> None:
    if backend not in BACKENDS:
        raise ValueError(f"Unknown backend: {backend}. Available: {list(BACKENDS)}")
