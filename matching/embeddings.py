#Purpose: The embedding oracle adapter (optional dependency of the scorer).
#Sole responsibility: turn text into a fixed-length vector through the
#Hugging Face feature-extraction endpoint and return it normalized.
#Any failure surfaces as EmbeddingError so the scorer can fall back.

from __future__ import annotations

import logging
import os
from typing import List, Optional

import numpy as np
import requests
from dotenv import load_dotenv

from routing.cache import TTLCache

# Example in .env:
# HUGGINGFACE_TOKEN=hf_xxx
# EMBEDDING_MODEL=sentence-transformers/all-MiniLM-L6-v2
load_dotenv()
HUGGINGFACE_TOKEN = os.getenv("HUGGINGFACE_TOKEN")
EMBEDDING_MODEL = os.getenv("EMBEDDING_MODEL", "sentence-transformers/all-MiniLM-L6-v2")
EMBEDDING_API_URL = os.getenv("EMBEDDING_API_URL", "https://api-inference.huggingface.co/pipeline/feature-extraction")

logger = logging.getLogger(__name__)


class EmbeddingError(Exception):
    """Raised when the embedding oracle cannot produce a vector."""
    pass


class HuggingFaceEmbeddingClient:
    """
    Embedding oracle backed by a sentence-transformers model.

    Recipient profile texts repeat across donations, so vectors are cached
    by text for a short while.
    """
    def __init__(
        self,
        token: Optional[str] = None,
        model: Optional[str] = None,
        api_url: Optional[str] = None,
        timeout: int = 10,
        cache: Optional[TTLCache] = None,
    ):
        self.token = token or HUGGINGFACE_TOKEN
        self.model = model or EMBEDDING_MODEL
        self.api_url = (api_url or EMBEDDING_API_URL).rstrip("/")
        self.timeout = timeout
        self.cache = cache if cache is not None else TTLCache(ttl_seconds=300)

        if not self.token:
            raise ValueError("Hugging Face token not set. Please set HUGGINGFACE_TOKEN in the .env file.")

    def embed(self, text: str) -> List[float]:
        if not text or not text.strip():
            raise EmbeddingError("Cannot embed empty text")

        cached = self.cache.get(text)
        if cached is not None:
            return cached

        try:
            response = requests.post(
                f"{self.api_url}/{self.model}",
                headers={"Authorization": f"Bearer {self.token}"},
                json={"inputs": text, "options": {"wait_for_model": True}},
                timeout=self.timeout,
            )
            response.raise_for_status()
            payload = response.json()
        except (requests.RequestException, ValueError) as exc:
            raise EmbeddingError(f"Failed to generate text embeddings: {exc}") from exc

        vector = self._to_sentence_vector(payload)
        self.cache.set(text, vector)
        return vector

    @staticmethod
    def _to_sentence_vector(payload) -> List[float]:
        """
        The endpoint returns either one sentence vector or one vector per
        token; token vectors are mean-pooled.
        """
        try:
            array = np.asarray(payload, dtype=float)
        except (TypeError, ValueError) as exc:
            raise EmbeddingError("Embedding response is not numeric") from exc

        while array.ndim > 1:
            array = array.mean(axis=0)

        if array.ndim != 1 or array.size == 0:
            raise EmbeddingError("Embedding response is empty")
        return array.tolist()
