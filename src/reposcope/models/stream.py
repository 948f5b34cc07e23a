"""Stream chunk data models.

Every backend emits the same two chunk kinds: narrative text, and usage
updates carrying the backend's latest cumulative token count.
"""

from __future__ import annotations

from typing import Literal, Union

from pydantic import BaseModel, ConfigDict


class TextChunk(BaseModel):
    kind: Literal["text"] = "text"
    content: str


class UsageChunk(BaseModel):
    kind: Literal["usage"] = "usage"
    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0


StreamChunk = Union[TextChunk, UsageChunk]


class TokenUsage(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    input: int = 0
    output: int = 0
    total: int = 0

    @classmethod
    def from_chunk(cls, chunk: UsageChunk) -> "TokenUsage":
        return cls(
            input=chunk.input_tokens,
            output=chunk.output_tokens,
            total=chunk.total_tokens,
        )
