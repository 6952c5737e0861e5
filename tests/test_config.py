"""Tests for configuration loading."""

import pytest
import yaml

from mailtidy.config import Config, load_config


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    for var in (
        "MAILTIDY_CONFIG", "MAILTIDY_AI_PROVIDER", "CLAUDE_MODEL_ID",
        "AWS_REGION", "OLLAMA_HOST", "OLLAMA_API_KEY", "MAILTIDY_DB",
    ):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.chdir(tmp_path)


def test_default_config():
    """Default config carries the documented limits."""
    config = Config()
    assert config.storage.sqlite_path == "mailtidy.db"
    assert config.ai.provider == "bedrock"
    assert config.ai.batch_size == 15
    assert config.rate_limit.max_requests == 7500
    assert config.rate_limit.window_seconds == 60.0
    assert config.rate_limit.min_delay_ms == 8.0
    assert config.sync.batch_size == 100
    assert config.sync.concurrency == 10
    assert config.sync.retry_delay_seconds == 30.0


def test_load_missing_config_uses_defaults():
    """Loading with no config file returns defaults."""
    config = load_config()
    assert isinstance(config, Config)
    assert config.gmail.page_size == 500


def test_load_config_from_yaml(tmp_path):
    """Values from YAML merge with defaults; ints land in float fields."""
    path = tmp_path / "custom.yaml"
    path.write_text(yaml.dump({
        "ai": {"provider": "ollama", "model": "llama3"},
        "rate_limit": {"window_seconds": 30},
    }))

    config = load_config(path)
    assert config.ai.provider == "ollama"
    assert config.ai.model == "llama3"
    assert config.ai.batch_size == 15
    assert config.rate_limit.window_seconds == 30.0


def test_load_config_missing_path_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "nope.yaml")


def test_config_env_var_location(monkeypatch, tmp_path):
    """MAILTIDY_CONFIG points at the file to load."""
    path = tmp_path / "elsewhere.yaml"
    path.write_text(yaml.dump({"storage": {"sqlite_path": "/tmp/x.db"}}))
    monkeypatch.setenv("MAILTIDY_CONFIG", str(path))

    assert load_config().storage.sqlite_path == "/tmp/x.db"


def test_env_overrides(monkeypatch):
    monkeypatch.setenv("MAILTIDY_AI_PROVIDER", "anthropic")
    monkeypatch.setenv("CLAUDE_MODEL_ID", "claude-sonnet")
    monkeypatch.setenv("AWS_REGION", "eu-west-1")
    monkeypatch.setenv("MAILTIDY_DB", "other.db")

    config = load_config()
    assert config.ai.model_spec == "anthropic:claude-sonnet"
    assert config.ai.aws_region == "eu-west-1"
    assert config.storage.sqlite_path == "other.db"


def test_dotenv_does_not_override_environment(monkeypatch, tmp_path):
    """.env fills unset variables only."""
    # register for teardown so the value .env sets is removed afterwards
    monkeypatch.setenv("OLLAMA_HOST", "unset")
    monkeypatch.delenv("OLLAMA_HOST")
    (tmp_path / ".env").write_text('OLLAMA_HOST="http://gpu:11434"\nAWS_REGION=ap-south-1\n')
    monkeypatch.setenv("AWS_REGION", "us-west-2")

    config = load_config()
    assert config.ai.ollama_base_url == "http://gpu:11434"
    assert config.ai.aws_region == "us-west-2"
