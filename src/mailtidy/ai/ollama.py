"""Ollama AI provider: HTTP client for local LLM inference."""

from __future__ import annotations

import asyncio

import httpx

from mailtidy.ai.base import Completion


class OllamaProvider:
    """Ollama HTTP API client for local or cloud inference."""

    def __init__(self, base_url: str = "http://localhost:11434", api_key: str = ""):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key

    async def complete(
        self,
        prompt: str,
        model: str,
        max_tokens: int = 4000,
        system: str = "",
    ) -> Completion:
        """Send a prompt to Ollama and return the generated text."""
        payload: dict = {
            "model": model,
            "prompt": prompt,
            "stream": False,
            "options": {"num_predict": max_tokens},
        }
        if system:
            payload["system"] = system

        headers = {}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        max_retries = 3
        for attempt in range(max_retries):
            try:
                async with httpx.AsyncClient(timeout=120.0) as client:
                    resp = await client.post(
                        f"{self.base_url}/api/generate",
                        json=payload,
                        headers=headers,
                    )
                    resp.raise_for_status()

                data = resp.json()
                return Completion(
                    text=data.get("response", ""),
                    input_tokens=data.get("prompt_eval_count", 0),
                    output_tokens=data.get("eval_count", 0),
                )

            except (httpx.ConnectError, httpx.TimeoutException) as e:
                if attempt < max_retries - 1:
                    await asyncio.sleep(2 ** attempt)
                    continue
                raise ConnectionError(
                    f"Failed to connect to Ollama at {self.base_url}: {e}"
                ) from e
