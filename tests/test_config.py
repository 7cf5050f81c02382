import pytest

from agentloop.config import DEFAULT_MODEL, Settings
from agentloop.errors import InitializationError

_VARS = [
    "OPENAI_API_KEY",
    "OPENAI_BASE_URL",
    "OPENAI_ORG_ID",
    "AGENTLOOP_MODEL",
    "AGENTLOOP_MAX_ITERATIONS",
    "AGENTLOOP_MAX_CONSECUTIVE_ERRORS",
    "AGENTLOOP_DETAILED_ERRORS",
    "AGENTLOOP_LOG_LEVEL",
]


@pytest.fixture
def clean_env(monkeypatch):
    for name in _VARS:
        # set first so teardown also removes values loaded from a .env file
        monkeypatch.setenv(name, "")
        monkeypatch.delenv(name)
    return monkeypatch


def test_defaults(clean_env):
    settings = Settings.from_env(dotenv=False)
    assert settings.model == DEFAULT_MODEL
    assert settings.openai_api_key is None
    assert settings.log_level == "INFO"
    config = settings.invocation_config()
    assert config.max_iterations == 40
    assert config.max_consecutive_errors == 3
    assert not config.include_detailed_errors


def test_values_from_environment(clean_env):
    clean_env.setenv("OPENAI_API_KEY", "sk-test")
    clean_env.setenv("AGENTLOOP_MODEL", "gpt-mini")
    clean_env.setenv("AGENTLOOP_MAX_ITERATIONS", "5")
    clean_env.setenv("AGENTLOOP_DETAILED_ERRORS", "yes")
    clean_env.setenv("AGENTLOOP_LOG_LEVEL", "debug")

    settings = Settings.from_env(dotenv=False)
    assert settings.openai_api_key == "sk-test"
    assert settings.model == "gpt-mini"
    assert settings.log_level == "DEBUG"
    config = settings.invocation_config()
    assert config.max_iterations == 5
    assert config.include_detailed_errors


def test_invalid_integer_is_an_initialization_error(clean_env):
    clean_env.setenv("AGENTLOOP_MAX_CONSECUTIVE_ERRORS", "three")
    with pytest.raises(InitializationError, match="AGENTLOOP_MAX_CONSECUTIVE_ERRORS"):
        Settings.from_env(dotenv=False)


def test_dotenv_file_is_loaded(clean_env, tmp_path):
    (tmp_path / ".env").write_text("AGENTLOOP_MODEL=from-dotenv\n")
    assert Settings.from_env(env_file=str(tmp_path / ".env")).model == "from-dotenv"
