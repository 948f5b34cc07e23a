"""Ollama local inference provider (NDJSON streaming)."""

from __future__ import annotations

import json
from typing import AsyncIterator, Optional

import httpx

from ..core.errors import TransportFailure
from ..models.stream import StreamChunk, TextChunk, UsageChunk
from ..utils.sanitize import sanitize_error
from .base import BaseProvider


class OllamaProvider(BaseProvider):
    name = "ollama"
    requires_credential = False

    async def stream(
        self,
        system_prompt: str,
        user_prompt: str,
        api_key: Optional[str] = None,
    ) -> AsyncIterator[StreamChunk]:
        endpoint = self.config.get("endpoint", "http://localhost:11434")
        model = self.config.get("model", "llama3.1:8b")

        body = {
            "model": model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "stream": True,
            "options": {"temperature": self.common.get("temperature", 0.3)},
        }

        url = f"{endpoint.rstrip('/')}/api/chat"
        try:
            async with self._client() as client:
                async with client.stream("POST", url, json=body) as response:
                    await self._raise_for_status(response)
                    async for line in response.aiter_lines():
                        line = line.strip()
                        if not line:
                            continue
                        for chunk in self._parse_line(line):
                            yield chunk
        except httpx.HTTPError as e:
            raise self._transport_failure(e) from e

    def _parse_line(self, line: str) -> list[StreamChunk]:
        try:
            data = json.loads(line)
        except json.JSONDecodeError as e:
            raise TransportFailure(f"ollama: malformed stream line: {line[:200]}") from e

        if not isinstance(data, dict):
            raise TransportFailure(f"ollama: unexpected stream line: {line[:200]}")

        if data.get("error"):
            raise TransportFailure(f"ollama: {sanitize_error(str(data['error']))}")

        chunks: list[StreamChunk] = []
        message = data.get("message")
        content = message.get("content") if isinstance(message, dict) else None
        content = content or data.get("response")
        if isinstance(content, str) and content:
            chunks.append(TextChunk(content=content))

        if data.get("done"):
            input_tokens = data.get("prompt_eval_count", 0)
            output_tokens = data.get("eval_count", 0)
            chunks.append(
                UsageChunk(
                    input_tokens=input_tokens,
                    output_tokens=output_tokens,
                    total_tokens=input_tokens + output_tokens,
                )
            )
        return chunks
