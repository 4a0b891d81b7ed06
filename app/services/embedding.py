"""Embedding provider client: text in, fixed-length vector out."""
import json
import logging
import time
from typing import Optional, Union

import httpx
import redis

from app.config import get_settings
from app.exceptions import EmbeddingError
from app.schemas.job import EmbeddingConfig

CACHE_PREFIX = "emb:"

settings = get_settings()
logger = logging.getLogger(__name__)


class EmbeddingGenerator:
    """
    Calls the provider named in an EmbeddingConfig.

    The HTTP client and optional Redis cache are owned by the caller and
    passed in, so one worker run shares a single connection pool.
    """

    def __init__(
        self,
        http_client: httpx.Client,
        cache: Optional[redis.Redis] = None,
        openai_api_url: Optional[str] = None,
        openai_api_key: Optional[str] = None,
    ):
        self.http = http_client
        self.cache = cache
        self.openai_api_url = openai_api_url or settings.openai_api_url
        self.openai_api_key = openai_api_key or settings.openai_api_key

    def embed(self, payload: Union[str, bytes], config: EmbeddingConfig) -> list[float]:
        """
        Embed a single payload.

        Args:
            payload: Text to embed (image bytes are not accepted server-side)
            config: Provider configuration from the job metadata

        Returns:
            Embedding vector

        Raises:
            EmbeddingError: provider missing, unsupported or failing
        """
        if isinstance(payload, bytes):
            raise EmbeddingError(f"provider '{config.provider}' cannot embed image data on the server")

        start_time = time.time()
        if config.provider == "openai":
            vector = self._embed_openai(payload, config)
        elif config.provider == "ollama":
            vector = self._embed_ollama(payload, config)
        elif config.provider == "none":
            raise EmbeddingError("no embedding provider configured")
        else:
            raise EmbeddingError(
                f"provider '{config.provider}' runs client-side; import precomputed vectors instead"
            )

        logger.debug(
            f"⚡ Embedded {len(payload)} chars with {config.provider} "
            f"in {round(time.time() - start_time, 3)}s (dim={len(vector)})"
        )
        return vector

    def _embed_openai(self, text: str, config: EmbeddingConfig) -> list[float]:
        if not config.openai:
            raise EmbeddingError("OpenAI configuration missing")

        cache_key = f"{CACHE_PREFIX}openai:{config.openai.model}:{text}"
        if config.openai.cache_ttl:
            cached = self._cache_get(cache_key)
            if cached is not None:
                logger.debug("🎯 Embedding cache hit")
                return cached

        api_key = config.openai.api_key or self.openai_api_key
        if not api_key:
            raise EmbeddingError("OpenAI API key missing")

        data = self._post(
            self.openai_api_url,
            {"input": text, "model": config.openai.model, "encoding_format": "float"},
            headers={"Authorization": f"Bearer {api_key}"},
        )
        try:
            vector = data["data"][0]["embedding"]
        except (KeyError, IndexError, TypeError) as e:
            raise EmbeddingError("unexpected OpenAI response shape") from e

        vector = self._validate(vector)
        if config.openai.cache_ttl:
            self._cache_set(cache_key, vector, config.openai.cache_ttl)
        return vector

    def _embed_ollama(self, text: str, config: EmbeddingConfig) -> list[float]:
        if not config.ollama:
            raise EmbeddingError("Ollama configuration missing")

        prompt = text
        if config.ollama.prompt_template:
            prompt = config.ollama.prompt_template.replace("{text}", text)

        data = self._post(config.ollama.api_url, {"model": config.ollama.model_name, "prompt": prompt})
        if not isinstance(data, dict) or "embedding" not in data:
            raise EmbeddingError("unexpected Ollama response shape")
        return self._validate(data["embedding"])

    def _post(self, url: str, body: dict, headers: Optional[dict] = None) -> dict:
        try:
            response = self.http.post(url, json=body, headers=headers)
        except httpx.TimeoutException as e:
            raise EmbeddingError(f"request to {url} timed out") from e
        except httpx.HTTPError as e:
            raise EmbeddingError(str(e)) from e

        if response.status_code >= 400:
            raise EmbeddingError(f"{response.status_code} - {response.text}")
        try:
            return response.json()
        except ValueError as e:
            raise EmbeddingError("provider returned invalid JSON") from e

    @staticmethod
    def _validate(vector) -> list[float]:
        if not isinstance(vector, list) or not vector:
            raise EmbeddingError("provider returned an empty embedding")
        try:
            return [float(v) for v in vector]
        except (TypeError, ValueError) as e:
            raise EmbeddingError("provider returned non-numeric values") from e

    def _cache_get(self, key: str) -> Optional[list[float]]:
        if self.cache is None:
            return None
        try:
            cached = self.cache.get(key)
        except redis.RedisError as e:
            logger.warning(f"⚠️ Embedding cache read failed: {e}")
            return None
        return json.loads(cached) if cached else None

    def _cache_set(self, key: str, vector: list[float], ttl: int) -> None:
        if self.cache is None:
            return
        try:
            self.cache.setex(key, ttl, json.dumps(vector))
        except redis.RedisError as e:
            logger.warning(f"⚠️ Embedding cache write failed: {e}")
