import logging
from pathlib import Path
from typing import Optional, Type, TypeVar

import yaml
from pydantic import BaseModel, Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from core.errors import ConfigError

# --- Base Path ---
BASE_DIR = Path(__file__).resolve().parent.parent
logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)

DEFAULT_SYSTEM_PROMPT = (
    "You are a real-time meeting assistant. Answer the user's question directly and "
    "concisely, as something they could say out loud. Never hedge. Plain text only."
)


# --- Environment-based Settings ---

class AppSettings(BaseSettings):
    """
    Application settings loaded from environment variables.
    The .env file is loaded automatically by pydantic-settings.
    """
    model_config = SettingsConfigDict(env_file='.env', env_file_encoding='utf-8', extra='ignore')

    # --- General & Core ---
    LOG_LEVEL: str = Field("INFO", description="Log level for the application (e.g., DEBUG, INFO, WARNING, ERROR)")
    ROUTING_CONFIG_PATH: Optional[str] = Field(None, description="Optional: Path to a specific routing YAML file.")
    REQUEST_TIMEOUT: float = Field(60.0, description="Per-request HTTP timeout in seconds.")

    # --- Cloud backends ---
    GEMINI_API_KEY: Optional[str] = Field(None)
    GROQ_API_KEY: Optional[str] = Field(None)
    OPENAI_API_KEY: Optional[str] = Field(None)
    ANTHROPIC_API_KEY: Optional[str] = Field(None)

    # --- Ollama / Local LLMs ---
    OLLAMA_HOST: str = Field("http://localhost:11434", description="The full URL of your Ollama server.")
    OLLAMA_MODEL: str = Field("llama3.2", description="Model used when local inference is selected.")


# --- YAML-based Configuration Models ---

class ModelsConfig(BaseModel):
    gemini_flash: str = "gemini-3-flash-preview"
    gemini_pro: str = "gemini-3-pro-preview"
    groq: str = "llama-3.3-70b-versatile"
    openai: str = "gpt-5.2-chat-latest"
    claude: str = "claude-sonnet-4-5"


class GenerationConfig(BaseModel):
    temperature: float = 0.4
    max_tokens: int = 8192
    gemini_max_output_tokens: int = 65536
    system_prompt: str = DEFAULT_SYSTEM_PROMPT


class RetryConfig(BaseModel):
    max_rotations: int = Field(3, ge=1)
    backoff_ms: int = Field(1000, ge=0)
    stream_chunk_size: int = Field(10, ge=1)
    stream_validation_window: int = Field(64, ge=1)


class EndpointsConfig(BaseModel):
    gemini: str = "https://generativelanguage.googleapis.com/v1beta"
    groq: str = "https://api.groq.com/openai/v1"
    openai: str = "https://api.openai.com/v1"
    anthropic: str = "https://api.anthropic.com/v1"


class RoutingConfig(BaseModel):
    models: ModelsConfig = Field(default_factory=ModelsConfig)
    generation: GenerationConfig = Field(default_factory=GenerationConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    endpoints: EndpointsConfig = Field(default_factory=EndpointsConfig)


def load_yaml(path: Path) -> dict:
    """Reads a YAML mapping; an empty file reads as an empty mapping."""
    with open(path, 'r', encoding='utf-8') as f:
        data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Configuration file '{path}' must contain a mapping")
    return data


def load_config(path: Path, model: Type[T]) -> T:
    """Loads a YAML file and validates it with the given Pydantic model."""
    if not path.exists():
        logger.info(f"No configuration file at {path}, using defaults")
        return model()
    try:
        return model.model_validate(load_yaml(path))
    except yaml.YAMLError as e:
        raise ConfigError(f"Could not parse '{path}': {e}") from e
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration in '{path}': {e}") from e


# --- Main Config Object ---

class Config:
    """
    A unified configuration object.
    """
    def __init__(self, app: Optional[AppSettings] = None, routing: Optional[RoutingConfig] = None):
        try:
            self.app = app or AppSettings()
        except ValidationError as e:
            logger.critical(f"FATAL: Configuration validation error: {e}")
            raise ConfigError(str(e)) from e

        if routing is None:
            routing_path = Path(self.app.ROUTING_CONFIG_PATH) if self.app.ROUTING_CONFIG_PATH \
                else BASE_DIR / 'configs' / 'routing.yml'
            routing = load_config(routing_path, RoutingConfig)
        self.routing: RoutingConfig = routing


# --- Global Config Instance ---
_settings_instance = None


def get_settings() -> Config:
    """
    Returns a singleton instance of the Config object.
    This function controls when the settings are loaded and validated,
    making the application more testable.
    """
    global _settings_instance
    if _settings_instance is None:
        _settings_instance = Config()
    return _settings_instance


def reset_settings() -> None:
    """Drops the cached Config so the next get_settings() reloads it."""
    global _settings_instance
    _settings_instance = None
