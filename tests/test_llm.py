import json

import httpx
import numpy as np
import pytest

from rapport.analytics.similarity import cosine_similarities, cosine_similarity, is_zero_vector
from rapport.config import Settings, settings
from rapport.llm import LLMClient


def _ollama_client(handler) -> LLMClient:
    client = LLMClient(provider="ollama", embedding_provider="ollama")
    client._http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return client


class TestLLMClientConfig:
    def test_unknown_provider(self):
        with pytest.raises(ValueError, match="Unknown LLM provider"):
            LLMClient(provider="bard")

    def test_anthropic_cannot_embed(self):
        with pytest.raises(ValueError, match="cannot produce embeddings"):
            LLMClient(provider="ollama", embedding_provider="anthropic")


class TestOllamaBackend:
    @pytest.mark.asyncio
    async def test_chat_sends_system_and_temperature(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"message": {"content": "hello"}})

        client = _ollama_client(handler)
        text = await client.generate("be kind", "hi", model="llama3", temperature=0.0)

        assert text == "hello"
        assert seen["path"] == "/api/chat"
        assert seen["body"]["messages"][0] == {"role": "system", "content": "be kind"}
        assert seen["body"]["options"]["temperature"] == 0.0
        await client.close()

    @pytest.mark.asyncio
    async def test_embed_checks_dimension(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"embeddings": [[0.1, 0.2]]})

        client = _ollama_client(handler)
        with pytest.raises(ValueError, match="dimension mismatch"):
            await client.embed("hello")
        await client.close()

    @pytest.mark.asyncio
    async def test_embed_many_preserves_order(self):
        def handler(request: httpx.Request) -> httpx.Response:
            text = json.loads(request.content)["input"]
            value = float(len(text))
            return httpx.Response(200, json={"embeddings": [[value] * client.embedding_dim]})

        client = _ollama_client(handler)
        vectors = await client.embed_many(["a", "abc", "ab"])

        assert [v[0] for v in vectors] == [1.0, 3.0, 2.0]
        await client.close()

    @pytest.mark.asyncio
    async def test_embed_rejects_empty_text(self):
        client = _ollama_client(lambda request: httpx.Response(500))
        with pytest.raises(ValueError):
            await client.embed("   ")
        await client.close()


class TestSimilarity:
    def test_cosine_similarity(self):
        assert cosine_similarity([1, 0], [1, 0]) == pytest.approx(1.0)
        assert cosine_similarity([1, 0], [0, 1]) == pytest.approx(0.0)
        assert cosine_similarity([1, 0], [-1, 0]) == pytest.approx(-1.0)

    def test_degenerate_inputs(self):
        assert cosine_similarity([0, 0], [1, 0]) == 0.0
        assert cosine_similarity([1, 0], [1, 0, 0]) == 0.0
        assert cosine_similarity([], []) == 0.0

    def test_batch_similarities(self):
        sims = cosine_similarities([1, 0], [[2, 0], [0, 3], [0, 0]])
        assert np.allclose(sims, [1.0, 0.0, 0.0])
        assert cosine_similarities([1, 0], []).size == 0

    def test_is_zero_vector(self):
        assert is_zero_vector(None)
        assert is_zero_vector([0.0, 0.0])
        assert not is_zero_vector([0.0, 0.1])


class TestEmbeddingDimension:
    @pytest.mark.parametrize(
        "provider,expected", [("gemini", 768), ("ollama", 768), ("openai", 1536)]
    )
    def test_provider_native_size(self, provider, expected):
        config = Settings(llm_provider=provider, embedding_provider="", embedding_dim=0)
        assert config.resolved_embedding_dim == expected

    def test_embedding_provider_wins_over_llm_provider(self):
        config = Settings(llm_provider="anthropic", embedding_provider="ollama", embedding_dim=0)
        assert config.resolved_embedding_dim == 768

    def test_explicit_dimension_overrides(self):
        config = Settings(llm_provider="gemini", embedding_provider="", embedding_dim=256)
        assert config.resolved_embedding_dim == 256

    def test_client_uses_its_embedding_provider_size(self, monkeypatch):
        monkeypatch.setattr(settings, "embedding_dim", 0)
        client = LLMClient(provider="ollama", embedding_provider="ollama")
        assert client.embedding_dim == 768
