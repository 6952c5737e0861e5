"""Configuration loading and validation."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml


@dataclass
class GmailConfig:
    credentials_file: str = "credentials.json"
    token_file: str = "token.json"
    page_size: int = 500


@dataclass
class StorageConfig:
    sqlite_path: str = "mailtidy.db"


@dataclass
class PricingConfig:
    # USD per million tokens
    input_per_million: float = 3.00
    output_per_million: float = 15.00


@dataclass
class AIConfig:
    provider: str = "bedrock"
    model: str = "us.anthropic.claude-3-5-sonnet-20241022-v2:0"
    aws_region: str = "us-east-1"
    ollama_base_url: str = "http://localhost:11434"
    ollama_api_key: str = ""
    batch_size: int = 15
    pricing: PricingConfig = field(default_factory=PricingConfig)

    def to_provider_dict(self) -> dict:
        """Return a dict suitable for passing to get_provider()."""
        return {
            "aws_region": self.aws_region,
            "ollama_base_url": self.ollama_base_url,
            "ollama_api_key": self.ollama_api_key,
        }

    @property
    def model_spec(self) -> str:
        return f"{self.provider}:{self.model}"


@dataclass
class RateLimitConfig:
    max_requests: int = 7500
    window_seconds: float = 60.0
    min_delay_ms: float = 8.0


@dataclass
class SyncConfig:
    batch_size: int = 100
    concurrency: int = 10
    retry_delay_seconds: float = 30.0
    pause_every_batches: int = 3
    pause_seconds: float = 1.0
    stuck_after_minutes: int = 10


@dataclass
class AnalysisConfig:
    fetch_batch_size: int = 10
    delete_batch_size: int = 50


@dataclass
class Config:
    gmail: GmailConfig = field(default_factory=GmailConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    ai: AIConfig = field(default_factory=AIConfig)
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    analysis: AnalysisConfig = field(default_factory=AnalysisConfig)


def _dict_to_config(data: dict) -> Config:
    """Convert a raw dict to a Config dataclass, handling nested structures."""
    from dacite import Config as DaciteConfig
    from dacite import from_dict

    # YAML writes 60 for 60.0; let ints land in float fields
    return from_dict(data_class=Config, data=data, config=DaciteConfig(cast=[float]))


def _find_config_file() -> Path | None:
    """Search for config file in standard locations."""
    env_path = os.environ.get("MAILTIDY_CONFIG")
    if env_path:
        p = Path(env_path)
        if p.exists():
            return p

    local = Path("config.yaml")
    if local.exists():
        return local

    xdg = Path.home() / ".config" / "mailtidy" / "config.yaml"
    if xdg.exists():
        return xdg

    return None


def _load_dotenv() -> None:
    """Load .env file from current directory if it exists."""
    env_path = Path(".env")
    if not env_path.exists():
        return
    for line in env_path.read_text().splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        if "=" not in line:
            continue
        key, _, value = line.partition("=")
        key = key.strip()
        value = value.strip().strip('"').strip("'")
        # Don't overwrite already-set env vars
        if key not in os.environ:
            os.environ[key] = value


def _apply_env_overrides(config: Config) -> Config:
    """Override config values from environment variables.

    Supports:
        MAILTIDY_AI_PROVIDER -> config.ai.provider
        CLAUDE_MODEL_ID      -> config.ai.model
        AWS_REGION           -> config.ai.aws_region
        OLLAMA_HOST          -> config.ai.ollama_base_url
        OLLAMA_API_KEY       -> config.ai.ollama_api_key
        MAILTIDY_DB          -> config.storage.sqlite_path
    """
    if os.environ.get("MAILTIDY_AI_PROVIDER"):
        config.ai.provider = os.environ["MAILTIDY_AI_PROVIDER"]
    if os.environ.get("CLAUDE_MODEL_ID"):
        config.ai.model = os.environ["CLAUDE_MODEL_ID"]
    if os.environ.get("AWS_REGION"):
        config.ai.aws_region = os.environ["AWS_REGION"]
    if os.environ.get("OLLAMA_HOST"):
        config.ai.ollama_base_url = os.environ["OLLAMA_HOST"]
    if os.environ.get("OLLAMA_API_KEY"):
        config.ai.ollama_api_key = os.environ["OLLAMA_API_KEY"]
    if os.environ.get("MAILTIDY_DB"):
        config.storage.sqlite_path = os.environ["MAILTIDY_DB"]
    return config


def load_config(path: str | Path | None = None) -> Config:
    """Load configuration from YAML file, merging with defaults.

    Also loads .env file and applies environment variable overrides.
    """
    _load_dotenv()

    if path is not None:
        config_path = Path(path)
        if not config_path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")
    else:
        config_path = _find_config_file()

    if config_path is None:
        config = Config()
    else:
        with open(config_path) as f:
            raw = yaml.safe_load(f) or {}
        config = _dict_to_config(raw)

    return _apply_env_overrides(config)
