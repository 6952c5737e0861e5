"""AI provider factory."""

from __future__ import annotations

from mailtidy.ai.anthropic_provider import AnthropicProvider
from mailtidy.ai.base import AIProvider, Completion
from mailtidy.ai.ollama import OllamaProvider

__all__ = ["AIProvider", "Completion", "get_provider"]


def get_provider(model_spec: str, config: dict | None = None) -> tuple[AIProvider, str]:
    """Parse 'provider:model_name' and return (provider_instance, model_name).

    If no colon is present, assumes bedrock as the provider. Bedrock model IDs
    contain colons themselves, so only the first one separates the provider.
    """
    provider_name, sep, model_name = model_spec.partition(":")
    if not sep or provider_name not in ("ollama", "anthropic", "bedrock"):
        provider_name = "bedrock"
        model_name = model_spec

    config = config or {}

    if provider_name == "ollama":
        base_url = config.get("ollama_base_url", "http://localhost:11434")
        api_key = config.get("ollama_api_key", "")
        return OllamaProvider(base_url=base_url, api_key=api_key), model_name
    if provider_name == "anthropic":
        return AnthropicProvider(), model_name
    return AnthropicProvider(
        bedrock=True, aws_region=config.get("aws_region", "us-east-1")
    ), model_name
