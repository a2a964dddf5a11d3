"""Provider descriptors, backend selection and the per-request attempt plan."""
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, List, Optional, Tuple

GEMINI_FLASH = "gemini-flash"
GEMINI_PRO = "gemini-pro"
GROQ = "groq"
OPENAI = "openai"
CLAUDE = "claude"
OLLAMA = "ollama"
CUSTOM_PREFIX = "custom:"

# Fixed cross-family priority, per modality.
TEXT_PRIORITY: Tuple[str, ...] = (GEMINI_FLASH, GEMINI_PRO, GROQ, OPENAI, CLAUDE)
VISION_PRIORITY: Tuple[str, ...] = (GEMINI_FLASH, OPENAI, CLAUDE, GEMINI_PRO)


class Family(str, Enum):
    GEMINI = "gemini"
    GROQ = "groq"
    OPENAI = "openai"
    CLAUDE = "claude"
    LOCAL = "local"
    CUSTOM = "custom"


@dataclass(frozen=True)
class Capabilities:
    supports_vision: bool
    supports_streaming: bool = True


@dataclass(frozen=True)
class ProviderDescriptor:
    identity: str
    family: Family
    model_identifier: str
    capabilities: Capabilities
    is_configured: bool

    @property
    def supports_vision(self) -> bool:
        return self.capabilities.supports_vision

    @property
    def label(self) -> str:
        return f"{self.identity} ({self.model_identifier})"


class SelectionKind(str, Enum):
    CLOUD_DEFAULT = "cloud_default"
    CLOUD_EXPLICIT = "cloud_explicit"
    LOCAL = "local"
    CUSTOM = "custom"


@dataclass(frozen=True)
class Selection:
    """Which backend the user picked. Changes only through explicit user action."""
    kind: SelectionKind = SelectionKind.CLOUD_DEFAULT
    target: Optional[str] = None

    @classmethod
    def cloud_default(cls) -> "Selection":
        return cls()

    @classmethod
    def cloud(cls, identity: str) -> "Selection":
        return cls(SelectionKind.CLOUD_EXPLICIT, identity)

    @classmethod
    def local(cls) -> "Selection":
        return cls(SelectionKind.LOCAL, OLLAMA)

    @classmethod
    def custom(cls, endpoint_id: str) -> "Selection":
        return cls(SelectionKind.CUSTOM, custom_identity(endpoint_id))

    @property
    def is_exclusive(self) -> bool:
        return self.kind in (SelectionKind.LOCAL, SelectionKind.CUSTOM)


def custom_identity(endpoint_id: str) -> str:
    return f"{CUSTOM_PREFIX}{endpoint_id}"


def build_attempt_plan(
    has_image: bool,
    descriptors: Iterable[ProviderDescriptor],
    selection: Selection,
) -> List[ProviderDescriptor]:
    """Order the providers eligible for one request.

    Pure function of (modality, configured set, selection):

    * providers without credentials are dropped;
    * providers without vision are dropped when the request carries an image;
    * a local or custom selection is used exclusively;
    * otherwise cloud providers follow the fixed priority for the modality,
      with an explicitly selected cloud model moved to the front.
    """
    eligible = [
        d for d in descriptors
        if d.is_configured and (d.supports_vision or not has_image)
    ]

    if selection.is_exclusive:
        return [d for d in eligible if d.identity == selection.target][:1]

    priority = VISION_PRIORITY if has_image else TEXT_PRIORITY
    by_identity = {d.identity: d for d in eligible}
    plan = [by_identity[identity] for identity in priority if identity in by_identity]

    if selection.kind == SelectionKind.CLOUD_EXPLICIT:
        chosen = [d for d in plan if d.identity == selection.target]
        plan = chosen + [d for d in plan if d.identity != selection.target]
    return plan
