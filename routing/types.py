"""Request and session types shared by every layer of the routing engine."""
import base64
import mimetypes
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Union

from core.errors import ProviderError

DEFAULT_IMAGE_MIME = "image/png"


@dataclass(frozen=True)
class GenerationRequest:
    """One question to answer. Immutable once built."""
    message: str
    image: Optional[Path] = None
    conversation_context: Optional[str] = None
    system_prompt_override: Optional[str] = None

    @classmethod
    def build(
        cls,
        message: str,
        image: Optional[Union[str, Path]] = None,
        context: Optional[str] = None,
        system_prompt_override: Optional[str] = None,
    ) -> "GenerationRequest":
        return cls(
            message=message,
            image=Path(image) if image else None,
            conversation_context=context or None,
            system_prompt_override=system_prompt_override or None,
        )

    @property
    def has_image(self) -> bool:
        return self.image is not None

    def system_prompt(self, default: str) -> str:
        return self.system_prompt_override or default

    def user_content(self) -> str:
        """Context and question in the layout every backend receives."""
        if self.conversation_context:
            return f"CONTEXT:\n{self.conversation_context}\n\nUSER QUESTION:\n{self.message}"
        return self.message

    def combined_prompt(self, default_system: str) -> str:
        """System prompt and user content folded into a single message."""
        return f"{self.system_prompt(default_system)}\n\n{self.user_content()}"


@dataclass(frozen=True)
class EncodedImage:
    data: str
    mime_type: str = DEFAULT_IMAGE_MIME

    @property
    def data_url(self) -> str:
        return f"data:{self.mime_type};base64,{self.data}"


def encode_image(path: Path, provider: Optional[str] = None) -> EncodedImage:
    """Read a still image from disk and base64-encode it."""
    try:
        raw = Path(path).read_bytes()
    except OSError as e:
        raise ProviderError(f"Could not read image {path}: {e}", provider=provider, transient=False) from e
    mime_type, _ = mimetypes.guess_type(str(path))
    if not mime_type or not mime_type.startswith("image/"):
        mime_type = DEFAULT_IMAGE_MIME
    return EncodedImage(data=base64.b64encode(raw).decode("ascii"), mime_type=mime_type)


@dataclass
class StreamSession:
    """Cooperative cancellation flag for one streamed answer, owned by the caller."""
    cancelled: bool = False
    provider: Optional[str] = field(default=None)

    def cancel(self) -> None:
        self.cancelled = True
