"""AI provider protocol."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, runtime_checkable


@dataclass
class Completion:
    """Raw model output plus the token usage the provider reported."""
    text: str
    input_tokens: int = 0
    output_tokens: int = 0


@runtime_checkable
class AIProvider(Protocol):
    """Protocol for AI model providers."""

    async def complete(
        self,
        prompt: str,
        model: str,
        max_tokens: int = 4000,
        system: str = "",
    ) -> Completion:
        """Send a prompt and return the model's text.

        Args:
            prompt: the user prompt
            model: model name/identifier
            max_tokens: output budget for this call
            system: optional system prompt

        Raises on transport or API errors; callers decide how to degrade.
        """
        ...
