"""Fournisseur d'embeddings avec repli hors ligne, cache et traitement par lots.

Objectif du module
------------------
- Appeler le fournisseur primaire configuré (Ollama, OpenAI) quand il existe.
- Basculer sans lever d'exception vers le schéma hashé dès que le primaire échoue.
- Ramener les vecteurs primaires à la dimension configurée et les normaliser en L2 pour qu'ils
  restent comparables aux vecteurs de repli.
- Mettre en cache les vecteurs par `(modèle, empreinte du texte)` pour la durée de vie de
  l'instance.
"""

from __future__ import annotations

import hashlib
import math
import threading
import time
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor

import structlog

from intake.domain.errors import EmbeddingProviderError
from intake.infra.embeddings.base import Embeddings
from intake.infra.embeddings.hashed_embedder import HashedEmbedder, l2_normalize
from intake.infra.monitoring.metrics import (
    EMBEDDING_CACHE,
    EMBEDDING_FALLBACKS,
    EMBEDDING_REQUESTS,
)

_FINGERPRINT_LEN = 32


def text_fingerprint(text: str) -> str:
    """Empreinte stable d'un texte pour la clé de cache."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()[:_FINGERPRINT_LEN]


def resize_vector(vector: list[float], dimensions: int) -> list[float]:
    """Ré-échantillonne un vecteur à `dimensions` par rapport d'indices, puis normalise (L2)."""
    if len(vector) == dimensions:
        return l2_normalize(list(vector))
    ratio = len(vector) / dimensions
    resized = [0.0] * dimensions
    for i in range(dimensions):
        src = math.floor(i * ratio)
        if src < len(vector):
            resized[i] = float(vector[src])
    return l2_normalize(resized)


def _is_valid_vector(vector: object) -> bool:
    if not isinstance(vector, list) or not vector:
        return False
    return all(
        isinstance(v, (int, float)) and not isinstance(v, bool) and math.isfinite(v)
        for v in vector
    )


class EmbeddingProvider:
    """Calcule des embeddings avec repli déterministe et cache en mémoire."""

    def __init__(
        self,
        primary: Embeddings | None = None,
        dimensions: int = 384,
        batch_size: int = 32,
        batch_delay_s: float = 0.05,
        max_workers: int = 8,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Initialise le fournisseur.

        Args:
            primary: Fournisseur primaire; `None` pour n'utiliser que le schéma hashé.
            dimensions: Dimension des vecteurs renvoyés.
            batch_size: Taille des paquets pour `embed_batch`.
            batch_delay_s: Pause entre deux paquets quand un primaire est configuré.
            max_workers: Parallélisme maximal à l'intérieur d'un paquet.
            sleep: Fonction de pause injectable (tests).
        """
        if batch_size <= 0:
            raise ValueError("batch_size must be positive")
        self.primary = primary
        self.dimensions = dimensions
        self.batch_size = batch_size
        self.batch_delay_s = batch_delay_s
        self.max_workers = max(1, max_workers)
        self._sleep = sleep
        self._fallback = HashedEmbedder(dimensions)
        self._cache: dict[str, list[float]] = {}
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._fallbacks = 0
        self._log = structlog.get_logger(__name__).bind(component="embedding_provider")

    @property
    def model_name(self) -> str:
        """Nom du modèle actif (primaire s'il existe, sinon schéma hashé)."""
        if self.primary is not None:
            return self.primary.model_name
        return self._fallback.model_name

    def _cache_get(self, key: str) -> list[float] | None:
        with self._lock:
            vec = self._cache.get(key)
            if vec is None:
                self._misses += 1
            else:
                self._hits += 1
        EMBEDDING_CACHE.labels(result="miss" if vec is None else "hit").inc()
        return vec

    def _cache_put(self, key: str, vector: list[float]) -> None:
        with self._lock:
            self._cache[key] = vector

    def _embed_fallback(self, text: str) -> list[float]:
        key = f"{self._fallback.model_name}:{text_fingerprint(text)}"
        cached = self._cache_get(key)
        if cached is not None:
            return cached
        EMBEDDING_REQUESTS.labels(provider=self._fallback.model_name).inc()
        vec = self._fallback.embed([text])[0]
        self._cache_put(key, vec)
        return vec

    def _embed_primary(self, text: str) -> list[float]:
        assert self.primary is not None
        result = self.primary.embed([text])
        if not isinstance(result, list) or len(result) != 1 or not _is_valid_vector(result[0]):
            raise EmbeddingProviderError("primary provider returned a malformed embedding")
        return resize_vector(result[0], self.dimensions)

    def embed(self, text: str) -> list[float]:
        """Calcule l'embedding d'un texte.

        Le primaire est tenté en premier; tout échec (timeout, HTTP, sortie malformée) est
        journalisé puis remplacé par l'embedding hashé. Cette méthode ne lève jamais pour une
        défaillance du primaire.
        """
        if self.primary is None:
            return self._embed_fallback(text)
        key = f"{self.primary.model_name}:{text_fingerprint(text)}"
        cached = self._cache_get(key)
        if cached is not None:
            return cached
        EMBEDDING_REQUESTS.labels(provider=self.primary.model_name).inc()
        try:
            vec = self._embed_primary(text)
        except Exception as exc:
            reason = "malformed" if isinstance(exc, EmbeddingProviderError) else "error"
            EMBEDDING_FALLBACKS.labels(provider=self.primary.model_name, reason=reason).inc()
            with self._lock:
                self._fallbacks += 1
            self._log.warning("embedding_primary_failed", error=str(exc), fallback="hashed")
            return self._embed_fallback(text)
        self._cache_put(key, vec)
        return vec

    def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Calcule les embeddings d'une liste de textes en conservant l'ordre.

        Les textes sont traités par paquets de `batch_size`; à l'intérieur d'un paquet les appels au
        primaire sont parallélisés (pool de threads borné). Une courte pause sépare deux paquets
        lorsque le primaire est configuré. Le chemin hors ligne reste séquentiel.
        """
        if not texts:
            return []
        if self.primary is None:
            return [self._embed_fallback(t) for t in texts]
        results: list[list[float]] = []
        workers = min(self.max_workers, self.batch_size)
        with ThreadPoolExecutor(max_workers=workers) as pool:
            for start in range(0, len(texts), self.batch_size):
                if start > 0 and self.batch_delay_s > 0:
                    self._sleep(self.batch_delay_s)
                chunk = texts[start : start + self.batch_size]
                results.extend(pool.map(self.embed, chunk))
        return results

    def clear_cache(self) -> None:
        """Vide le cache et remet les compteurs à zéro."""
        with self._lock:
            self._cache.clear()
            self._hits = 0
            self._misses = 0
            self._fallbacks = 0

    def cache_stats(self) -> dict[str, int | str]:
        """Statistiques du cache (taille, hits, misses, replis)."""
        with self._lock:
            return {
                "size": len(self._cache),
                "hits": self._hits,
                "misses": self._misses,
                "fallbacks": self._fallbacks,
                "model": self.model_name,
            }
