"""Anthropic AI provider: Claude through the Anthropic API or AWS Bedrock."""

from __future__ import annotations

from mailtidy.ai.base import Completion


class AnthropicProvider:
    """Async Claude client.

    With ``bedrock=True`` requests go through AWS Bedrock in ``aws_region``,
    using the standard AWS credential chain.
    """

    def __init__(self, bedrock: bool = False, aws_region: str = "us-east-1"):
        self.bedrock = bedrock
        self.aws_region = aws_region
        self._client = None

    def _get_client(self):
        if self._client is None:
            import anthropic
            if self.bedrock:
                self._client = anthropic.AsyncAnthropicBedrock(aws_region=self.aws_region)
            else:
                self._client = anthropic.AsyncAnthropic()
        return self._client

    async def complete(
        self,
        prompt: str,
        model: str,
        max_tokens: int = 4000,
        system: str = "",
    ) -> Completion:
        """Send a prompt to Claude and return its text and token usage."""
        client = self._get_client()

        kwargs: dict = {
            "model": model,
            "max_tokens": max_tokens,
            "messages": [{"role": "user", "content": prompt}],
        }
        if system:
            kwargs["system"] = system

        response = await client.messages.create(**kwargs)

        response_text = ""
        for block in response.content:
            if hasattr(block, "text"):
                response_text += block.text

        usage = getattr(response, "usage", None)
        return Completion(
            text=response_text,
            input_tokens=getattr(usage, "input_tokens", 0) or 0,
            output_tokens=getattr(usage, "output_tokens", 0) or 0,
        )
