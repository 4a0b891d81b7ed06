"""Tests for the embedding provider client."""
import json

import httpx
import pytest

from app.exceptions import EmbeddingError
from app.schemas.job import EmbeddingConfig
from app.services.embedding import EmbeddingGenerator

OPENAI_URL = "https://embeddings.test/v1/embeddings"


def make_generator(handler, cache=None, api_key="sk-test"):
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return EmbeddingGenerator(client, cache=cache, openai_api_url=OPENAI_URL, openai_api_key=api_key)


def openai_config(**kwargs):
    return EmbeddingConfig(provider="openai", openai=kwargs)


def test_openai_embedding():
    """Test that OpenAI requests carry the model and key and return the vector."""
    requests = []

    def handler(request):
        requests.append(request)
        return httpx.Response(200, json={"data": [{"embedding": [0.1, 0.2, 0.3]}]})

    generator = make_generator(handler)
    vector = generator.embed("hello", openai_config(model="text-embedding-3-small"))

    assert vector == [0.1, 0.2, 0.3]
    assert str(requests[0].url) == OPENAI_URL
    assert requests[0].headers["Authorization"] == "Bearer sk-test"
    body = json.loads(requests[0].content)
    assert body["input"] == "hello"
    assert body["model"] == "text-embedding-3-small"


def test_openai_key_from_config_wins():
    """Test that a key stored with the job overrides the server default."""
    seen = []

    def handler(request):
        seen.append(request.headers["Authorization"])
        return httpx.Response(200, json={"data": [{"embedding": [1.0]}]})

    make_generator(handler).embed("hello", openai_config(api_key="sk-job"))
    assert seen == ["Bearer sk-job"]


def test_openai_without_key():
    """Test that a missing API key is an embedding error."""
    generator = make_generator(lambda request: httpx.Response(200), api_key=None)
    generator.openai_api_key = None
    with pytest.raises(EmbeddingError):
        generator.embed("hello", openai_config())


def test_openai_cache(redis_client):
    """Test that cached embeddings skip the provider call."""
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200, json={"data": [{"embedding": [0.5, 0.25]}]})

    generator = make_generator(handler, cache=redis_client)
    config = openai_config(cache_ttl=60)

    assert generator.embed("cached text", config) == [0.5, 0.25]
    assert generator.embed("cached text", config) == [0.5, 0.25]
    assert len(calls) == 1
    assert redis_client.ttl("emb:openai:text-embedding-3-small:cached text") > 0


def test_ollama_embedding_with_prompt_template():
    """Test that Ollama receives the model name and templated prompt."""
    bodies = []

    def handler(request):
        bodies.append(json.loads(request.content))
        return httpx.Response(200, json={"embedding": [1, 2, 3]})

    config = EmbeddingConfig(
        provider="ollama",
        ollama={
            "api_url": "http://ollama.test/api/embeddings",
            "model_name": "nomic-embed-text",
            "prompt_template": "search_document: {text}",
        },
    )
    vector = make_generator(handler).embed("a movie", config)

    assert vector == [1.0, 2.0, 3.0]
    assert bodies == [{"model": "nomic-embed-text", "prompt": "search_document: a movie"}]


def test_provider_error_status():
    """Test that HTTP errors become embedding errors with the status."""
    generator = make_generator(lambda request: httpx.Response(500, text="overloaded"))
    with pytest.raises(EmbeddingError) as exc_info:
        generator.embed("hello", openai_config())
    assert "500 - overloaded" in str(exc_info.value)
    assert str(exc_info.value).startswith("embedding failed:")


def test_provider_connection_error():
    """Test that transport failures become embedding errors."""

    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(EmbeddingError):
        make_generator(handler).embed("hello", openai_config())


def test_unexpected_response_shape():
    """Test that a malformed provider response is rejected."""
    generator = make_generator(lambda request: httpx.Response(200, json={"data": []}))
    with pytest.raises(EmbeddingError):
        generator.embed("hello", openai_config())


def test_empty_vector_rejected():
    """Test that an empty embedding is rejected."""
    config = EmbeddingConfig(provider="ollama", ollama={"model_name": "m"})
    generator = make_generator(lambda request: httpx.Response(200, json={"embedding": []}))
    with pytest.raises(EmbeddingError):
        generator.embed("hello", config)


@pytest.mark.parametrize("provider", ["none", "image", "clip"])
def test_unsupported_providers(provider):
    """Test that providers without a server-side embedder fail per item."""
    generator = make_generator(lambda request: httpx.Response(200))
    config = EmbeddingConfig(provider=provider, none={"dimensions": 3} if provider == "none" else None)
    with pytest.raises(EmbeddingError):
        generator.embed("hello", config)


def test_image_bytes_rejected():
    """Test that raw image data cannot be embedded server-side."""
    generator = make_generator(lambda request: httpx.Response(200))
    with pytest.raises(EmbeddingError):
        generator.embed(b"\x89PNG", openai_config())
