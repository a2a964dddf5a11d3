import pytest

from core.config import AppSettings, Config, RoutingConfig
from fakes import SleepRecorder
from routing.credentials import CredentialStore


@pytest.fixture
def sleep():
    return SleepRecorder()


@pytest.fixture
def app_settings():
    """Settings with every cloud key unset, whatever the environment holds."""
    return AppSettings(
        _env_file=None,
        GEMINI_API_KEY=None,
        GROQ_API_KEY=None,
        OPENAI_API_KEY=None,
        ANTHROPIC_API_KEY=None,
    )


@pytest.fixture
def config(app_settings):
    return Config(app=app_settings, routing=RoutingConfig())


@pytest.fixture
def credentials():
    return CredentialStore()
