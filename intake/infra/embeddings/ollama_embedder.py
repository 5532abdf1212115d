"""Embedder HTTP compatible Ollama (`POST {url}/api/embeddings`).

Le service attend `{"model", "prompt"}` et renvoie `{"embedding": [...]}`. Toute réponse non
exploitable lève `EmbeddingProviderError`; le repli vers le schéma hashé est décidé par
`intake.services.embedding_provider`.
"""

from __future__ import annotations

import httpx

from intake.domain.errors import EmbeddingProviderError
from intake.infra.embeddings.base import Embeddings


class OllamaEmbedder(Embeddings):
    """Client d'embeddings pour un serveur Ollama."""

    def __init__(
        self,
        base_url: str,
        model: str = "nomic-embed-text",
        timeout_s: float = 30.0,
        client: httpx.Client | None = None,
    ) -> None:
        """Initialise le client HTTP réutilisable.

        Args:
            base_url: URL racine du serveur (ex. `http://localhost:11434`).
            model: Nom du modèle d'embedding.
            timeout_s: Timeout global d'une requête.
            client: Client httpx injecté (tests).
        """
        self.base_url = base_url.rstrip("/")
        self.model_name = model
        if client is None:
            timeout = httpx.Timeout(timeout_s, connect=min(5.0, timeout_s))
            limits = httpx.Limits(max_keepalive_connections=10, max_connections=20)
            client = httpx.Client(timeout=timeout, limits=limits)
        self._client = client

    def _embed_one(self, text: str) -> list[float]:
        url = f"{self.base_url}/api/embeddings"
        try:
            resp = self._client.post(url, json={"model": self.model_name, "prompt": text})
            resp.raise_for_status()
            data = resp.json()
        except httpx.HTTPError as exc:
            raise EmbeddingProviderError(f"ollama request failed: {exc}") from exc
        except ValueError as exc:
            raise EmbeddingProviderError("ollama returned invalid JSON") from exc
        embedding = data.get("embedding") if isinstance(data, dict) else None
        if not isinstance(embedding, list) or not embedding:
            raise EmbeddingProviderError("ollama response has no embedding")
        if not all(isinstance(v, (int, float)) and not isinstance(v, bool) for v in embedding):
            raise EmbeddingProviderError("ollama embedding contains non-numeric values")
        return [float(v) for v in embedding]

    def embed(self, texts: list[str]) -> list[list[float]]:
        """Génère un embedding par texte (une requête HTTP chacun)."""
        return [self._embed_one(t) for t in texts]

    def close(self) -> None:
        """Ferme le client HTTP sous-jacent."""
        self._client.close()
