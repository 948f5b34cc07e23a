"""Google Gemini cloud provider (server-sent events streaming)."""

from __future__ import annotations

import json
from typing import AsyncIterator, Optional

import httpx

from ..core.errors import RateLimited, TransportFailure, ValidationError
from ..models.stream import StreamChunk, TextChunk, UsageChunk
from ..utils.sanitize import sanitize_error
from .base import BaseProvider

RATE_LIMIT_STATUSES = {"RESOURCE_EXHAUSTED"}


class GeminiProvider(BaseProvider):
    name = "gemini"
    requires_credential = True
    API_KEY_ENV = "GEMINI_API_KEY"
    DEFAULT_ENDPOINT = "https://generativelanguage.googleapis.com"

    def _url(self) -> str:
        endpoint = self.config.get("endpoint") or self.DEFAULT_ENDPOINT
        model = self.config.get("model", "gemini-2.5-flash")
        return f"{endpoint.rstrip('/')}/v1beta/models/{model}:streamGenerateContent"

    async def stream(
        self,
        system_prompt: str,
        user_prompt: str,
        api_key: Optional[str] = None,
    ) -> AsyncIterator[StreamChunk]:
        key = api_key or self.default_api_key()
        if not key:
            env_var = self.config.get("api_key_env", self.API_KEY_ENV)
            raise ValidationError(
                f"No Gemini API key: add a model-access credential or set {env_var}"
            )

        body = {
            "systemInstruction": {"parts": [{"text": system_prompt}]},
            "contents": [{"role": "user", "parts": [{"text": user_prompt}]}],
            "generationConfig": {
                "temperature": self.common.get("temperature", 0.3),
                "maxOutputTokens": self.common.get("max_output_tokens", 8192),
            },
        }
        headers = {
            "x-goog-api-key": key,
            "content-type": "application/json",
        }

        try:
            async with self._client() as client:
                async with client.stream(
                    "POST", self._url(), params={"alt": "sse"}, json=body, headers=headers
                ) as response:
                    await self._raise_for_status(response)
                    async for line in response.aiter_lines():
                        if not line.startswith("data:"):
                            continue
                        payload = line[len("data:"):].strip()
                        if not payload:
                            continue
                        for chunk in self._parse_event(payload):
                            yield chunk
        except httpx.HTTPError as e:
            raise self._transport_failure(e) from e

    def _parse_event(self, payload: str) -> list[StreamChunk]:
        try:
            event = json.loads(payload)
        except json.JSONDecodeError as e:
            raise TransportFailure(f"gemini: malformed stream event: {payload[:200]}") from e

        if not isinstance(event, dict):
            raise TransportFailure(f"gemini: unexpected stream event: {payload[:200]}")

        error = event.get("error")
        if error and not isinstance(error, dict):
            raise TransportFailure(f"gemini: {sanitize_error(str(error))}")
        if error:
            message = sanitize_error(str(error.get("message", "")))
            if error.get("code") == 429 or error.get("status") in RATE_LIMIT_STATUSES:
                raise RateLimited(f"gemini: 429 | {message}")
            raise TransportFailure(
                f"gemini: {error.get('code', '?')} | {message}",
                status_code=error.get("code"),
            )

        chunks: list[StreamChunk] = []
        candidates = event.get("candidates")
        for candidate in candidates if isinstance(candidates, list) else []:
            content = candidate.get("content") if isinstance(candidate, dict) else None
            parts = content.get("parts") if isinstance(content, dict) else None
            for part in parts if isinstance(parts, list) else []:
                if not isinstance(part, dict):
                    continue
                text = part.get("text")
                if isinstance(text, str) and text and not part.get("thought"):
                    chunks.append(TextChunk(content=text))

        usage = event.get("usageMetadata")
        if isinstance(usage, dict):
            input_tokens = usage.get("promptTokenCount", 0)
            output_tokens = usage.get("candidatesTokenCount", 0)
            chunks.append(
                UsageChunk(
                    input_tokens=input_tokens,
                    output_tokens=output_tokens,
                    total_tokens=usage.get("totalTokenCount", input_tokens + output_tokens),
                )
            )
        return chunks
