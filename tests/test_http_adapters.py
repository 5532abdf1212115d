"""
Tests pour les adaptateurs HTTP (vérification d'URL, embedder Ollama) et l'embedder OpenAI.

Les appels réseau sont simulés avec `httpx.MockTransport`.
"""

from __future__ import annotations

import json
from unittest.mock import Mock

import httpx
import pytest

from intake.domain.errors import EmbeddingProviderError
from intake.infra.embeddings.ollama_embedder import OllamaEmbedder
from intake.infra.embeddings.openai_embedder import OpenAIEmbedder
from intake.infra.http_clients import UrlChecker
from intake.services.embedding_provider import EmbeddingProvider


def _client(handler) -> httpx.Client:
    return httpx.Client(transport=httpx.MockTransport(handler))


def test_url_checker_head_then_get_on_405() -> None:
    """Teste le repli HEAD -> GET et le cache par URL."""
    seen: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.method)
        if request.method == "HEAD":
            return httpx.Response(405)
        return httpx.Response(200)

    checker = UrlChecker(client=_client(handler))
    assert checker("https://youtu.be/abc")
    assert checker.is_reachable("https://youtu.be/abc")
    assert seen == ["HEAD", "GET"]


def test_url_checker_errors_mean_unreachable() -> None:
    """Teste qu'un statut >= 400 ou une erreur réseau rend l'URL injoignable."""

    def handler(request: httpx.Request) -> httpx.Response:
        if "down" in str(request.url):
            raise httpx.ConnectError("refused", request=request)
        return httpx.Response(404)

    checker = UrlChecker(client=_client(handler))
    assert not checker("https://example.com/missing")
    assert not checker("https://down.example.com/")
    checker.close()


def test_ollama_embedder_posts_prompt() -> None:
    """Teste le format de la requête et la lecture de la réponse."""
    bodies: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/api/embeddings"
        bodies.append(json.loads(request.content))
        return httpx.Response(200, json={"embedding": [0.1, 0.2, 0.3]})

    emb = OllamaEmbedder("http://ollama:11434/", model="nomic-embed-text", client=_client(handler))
    assert emb.embed(["hello"]) == [[0.1, 0.2, 0.3]]
    assert bodies == [{"model": "nomic-embed-text", "prompt": "hello"}]
    assert emb.model_name == "nomic-embed-text"


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(500),
        httpx.Response(200, content=b"not json"),
        httpx.Response(200, json={"embedding": []}),
        httpx.Response(200, json={"embedding": ["a", "b"]}),
        httpx.Response(200, json={"other": 1}),
    ],
)
def test_ollama_embedder_bad_responses(response: httpx.Response) -> None:
    """Teste les réponses inexploitables."""
    emb = OllamaEmbedder("http://ollama:11434", client=_client(lambda request: response))
    with pytest.raises(EmbeddingProviderError):
        emb.embed(["hello"])


def test_ollama_failure_falls_back_in_provider() -> None:
    """Teste le repli du fournisseur quand Ollama est indisponible."""

    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timeout", request=request)

    provider = EmbeddingProvider(
        primary=OllamaEmbedder("http://ollama:11434", client=_client(handler)), dimensions=16
    )
    vec = provider.embed("kubernetes pod scheduling")
    assert len(vec) == 16
    assert provider.cache_stats()["fallbacks"] == 1


def test_openai_embedder() -> None:
    """Teste l'embedder OpenAI avec un client simulé."""
    client = Mock()
    client.embeddings.create.return_value = Mock(data=[Mock(embedding=[0.5, 0.5])])
    emb = OpenAIEmbedder(client=client, model="text-embedding-3-small")
    assert emb.embed(["x"]) == [[0.5, 0.5]]
    client.embeddings.create.assert_called_once_with(model="text-embedding-3-small", input=["x"])

    client.embeddings.create.return_value = Mock(data=[])
    with pytest.raises(EmbeddingProviderError):
        emb.embed(["x"])
    client.embeddings.create.side_effect = RuntimeError("quota")
    with pytest.raises(EmbeddingProviderError):
        emb.embed(["x"])
