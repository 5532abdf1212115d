"""Index de similarité sémantique entre items de contenu.

Objectif du module
------------------
- Construire le texte à vectoriser d'un item (question, réponse, explication, tags).
- Indexer un corpus par paquets dans un `VectorStore` (mémoire ou FAISS).
- Rechercher les voisins d'un item avec seuil, exclusions, filtre de canal et limite.

Un paquet qui échoue à l'indexation est journalisé, compté et ignoré; il n'interrompt pas le lot.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

import structlog

from intake.core.constants import EMBEDDING_TEXT_MAX_LEN, PREVIEW_LEN
from intake.domain.models import ContentItem, SimilarMatch
from intake.infra.monitoring.metrics import SIMILARITY_INDEX_FAILURES
from intake.infra.vecstores.base import VectorStore
from intake.infra.vecstores.memory_store import MemoryVectorStore
from intake.services.embedding_provider import EmbeddingProvider

DEFAULT_INDEX_CHUNK = 20


def build_embedding_text(item: ContentItem) -> str:
    """Concatène question, réponse, explication et tags, tronqué à 8000 caractères."""
    parts = [item.question, item.answer or "", item.explanation or ""]
    if item.tags:
        parts.append(" ".join(item.tags))
    return " ".join(parts)[:EMBEDDING_TEXT_MAX_LEN]


@dataclass(frozen=True)
class _Payload:
    channel: str
    question: str


class SimilarityIndex:
    """Index vectoriel d'items de contenu."""

    def __init__(
        self,
        provider: EmbeddingProvider,
        store: VectorStore | None = None,
        chunk_size: int = DEFAULT_INDEX_CHUNK,
    ) -> None:
        """Initialise l'index.

        Args:
            provider: Fournisseur d'embeddings.
            store: Magasin vectoriel (mémoire par défaut).
            chunk_size: Taille des paquets d'indexation.
        """
        self.provider = provider
        self.store = store if store is not None else MemoryVectorStore()
        self.chunk_size = max(1, chunk_size)
        self._payloads: dict[str, _Payload] = {}
        self._failed_ids: list[str] = []
        self._log = structlog.get_logger(__name__).bind(component="similarity_index")

    def index(self, items: Iterable[ContentItem]) -> int:
        """Indexe des items et retourne le nombre effectivement indexé.

        Un item déjà présent est ré-indexé (son vecteur est remplacé).
        """
        batch = list(items)
        indexed = 0
        for start in range(0, len(batch), self.chunk_size):
            chunk = batch[start : start + self.chunk_size]
            try:
                vectors = self.provider.embed_batch([build_embedding_text(i) for i in chunk])
                indexed += self.store.add([i.id for i in chunk], vectors)
            except Exception as exc:
                SIMILARITY_INDEX_FAILURES.labels(op="index").inc()
                self._failed_ids.extend(i.id for i in chunk)
                self._log.error(
                    "similarity_index_chunk_failed",
                    chunk_start=start,
                    chunk_size=len(chunk),
                    error=str(exc),
                )
                continue
            for item in chunk:
                self._payloads[item.id] = _Payload(
                    channel=item.channel, question=item.question[:PREVIEW_LEN]
                )
        self._log.debug("similarity_index_indexed", indexed=indexed, total=len(batch))
        return indexed

    def find_similar(
        self,
        item: ContentItem,
        threshold: float = 0.7,
        exclude_ids: Iterable[str] | None = None,
        channel: str | None = None,
        limit: int | None = None,
    ) -> list[SimilarMatch]:
        """Retourne les items indexés dont la similarité avec `item` est ≥ `threshold`.

        L'item lui-même et `exclude_ids` sont exclus. Les résultats sont triés par score
        décroissant, filtrés par canal si demandé et tronqués à `limit`.
        """
        vector = self.provider.embed(build_embedding_text(item))
        excluded = set(exclude_ids or ())
        excluded.add(item.id)
        return self._ranked(vector, threshold, excluded, channel, limit)

    def search_text(
        self,
        text: str,
        threshold: float = 0.5,
        channel: str | None = None,
        limit: int | None = 20,
    ) -> list[SimilarMatch]:
        """Recherche sémantique libre à partir d'un texte."""
        vector = self.provider.embed(text[:EMBEDDING_TEXT_MAX_LEN])
        return self._ranked(vector, threshold, set(), channel, limit)

    def _ranked(
        self,
        vector: list[float],
        threshold: float,
        excluded: set[str],
        channel: str | None,
        limit: int | None,
    ) -> list[SimilarMatch]:
        # recherche exhaustive puis filtrage: les filtres sont appliqués hors du store
        hits = self.store.search(vector, self.store.count())
        matches: list[SimilarMatch] = []
        for hit_id, score in hits:
            if score < threshold:
                break
            if hit_id in excluded:
                continue
            payload = self._payloads.get(hit_id, _Payload(channel="", question=""))
            if channel and payload.channel != channel:
                continue
            matches.append(
                SimilarMatch(
                    id=hit_id,
                    score=min(1.0, max(0.0, score)),
                    channel=payload.channel,
                    question=payload.question,
                )
            )
            if limit is not None and len(matches) >= limit:
                break
        return matches

    def remove(self, ids: Iterable[str]) -> int:
        """Retire des items de l'index."""
        ids = list(ids)
        removed = self.store.remove(ids)
        for item_id in ids:
            self._payloads.pop(item_id, None)
        return removed

    def count(self) -> int:
        """Nombre d'items indexés."""
        return self.store.count()

    def __contains__(self, item_id: object) -> bool:
        return item_id in self._payloads

    @property
    def failed_ids(self) -> list[str]:
        """Ids dont l'indexation a échoué."""
        return list(self._failed_ids)

    def stats(self) -> dict[str, object]:
        """Statistiques de l'index (taille, backend, modèle, échecs)."""
        return {
            "count": self.count(),
            "backend": self.store.backend,
            "model": self.provider.model_name,
            "dimensions": self.provider.dimensions,
            "failed": len(self._failed_ids),
        }
