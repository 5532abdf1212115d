"""
Embedder OpenAI pour la génération d'embeddings.

Ce module implémente un embedder utilisant l'API OpenAI. Les erreurs du SDK sont converties en
`EmbeddingProviderError` pour que le fournisseur puisse basculer sur le schéma hashé.
"""

from __future__ import annotations

from typing import Any

from openai import OpenAI

from intake.domain.errors import EmbeddingProviderError
from intake.infra.embeddings.base import Embeddings


class OpenAIEmbedder(Embeddings):
    """
    Embedder OpenAI pour la génération d'embeddings.

    Utilise l'endpoint `embeddings.create` du SDK officiel.
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str = "text-embedding-3-small",
        timeout_s: float = 30.0,
        client: Any | None = None,
    ) -> None:
        """
        Initialise l'embedder OpenAI.

        Args:
            api_key: Clé API (jamais journalisée).
            model: Modèle d'embedding.
            timeout_s: Timeout d'un appel.
            client: Client compatible SDK injecté (tests).
        """
        self.model_name = model
        self.client = client or OpenAI(api_key=api_key or None, timeout=timeout_s)

    def embed(self, texts: list[str]) -> list[list[float]]:
        """
        Génère des embeddings vectoriels via l'API OpenAI.

        Args:
            texts: Liste des textes à convertir en embeddings.

        Returns:
            list[list[float]]: Liste des vecteurs d'embedding.
        """
        try:
            resp = self.client.embeddings.create(model=self.model_name, input=texts)
            vectors = [list(d.embedding) for d in resp.data]
        except Exception as exc:
            raise EmbeddingProviderError(f"openai embeddings failed: {exc}") from exc
        if len(vectors) != len(texts) or any(not v for v in vectors):
            raise EmbeddingProviderError("openai returned an incomplete embedding batch")
        return vectors
