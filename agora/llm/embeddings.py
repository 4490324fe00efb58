"""Embedders — turn text into retrieval vectors."""

from __future__ import annotations

import hashlib
import math
import re
from collections import Counter

import httpx

from agora.llm.base import post_json
from agora.ports import Embedder

OPENAI_EMBEDDINGS_URL = "https://api.openai.com/v1/embeddings"


def _tokenize(text: str) -> list[str]:
    """Simple tokenizer — lowercase, split on non-alphanumeric."""
    return re.findall(r"[a-z0-9]+", text.lower())


class TermVectorEmbedder(Embedder):
    """Offline embedder: hashed term frequencies, L2-normalized.

    Deterministic across processes, so vectors stored by one run
    stay comparable with queries from the next.
    """

    def __init__(self, dimensions: int = 256) -> None:
        self.dimensions = dimensions

    async def embed(self, text: str) -> list[float]:
        vector = [0.0] * self.dimensions
        for token, count in Counter(_tokenize(text)).items():
            digest = hashlib.blake2b(token.encode(), digest_size=8).digest()
            vector[int.from_bytes(digest, "big") % self.dimensions] += count
        norm = math.sqrt(sum(v * v for v in vector))
        if norm == 0:
            return vector
        return [v / norm for v in vector]


class OpenAIEmbedder(Embedder):
    def __init__(
        self,
        api_key: str,
        model: str = "text-embedding-3-small",
        url: str = OPENAI_EMBEDDINGS_URL,
        timeout: float = 10.0,
        max_response_bytes: int = 2 * 1024 * 1024,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_key = api_key
        self._model = model
        self._url = url
        self._timeout = timeout
        self._max_bytes = max_response_bytes
        self._transport = transport

    async def embed(self, text: str) -> list[float]:
        if not text.strip():
            raise ValueError("Cannot embed empty text")
        data = await post_json(
            self._url,
            {"model": self._model, "input": text},
            {"Authorization": f"Bearer {self._api_key}"},
            provider="openai-embeddings",
            timeout=self._timeout,
            max_bytes=self._max_bytes,
            transport=self._transport,
        )
        return list(data["data"][0]["embedding"])


def cosine_similarity(a: list[float], b: list[float]) -> float:
    if not a or not b or len(a) != len(b):
        return 0.0
    dot = sum(x * y for x, y in zip(a, b))
    mag_a = math.sqrt(sum(x * x for x in a))
    mag_b = math.sqrt(sum(y * y for y in b))
    if mag_a == 0 or mag_b == 0:
        return 0.0
    return dot / (mag_a * mag_b)
