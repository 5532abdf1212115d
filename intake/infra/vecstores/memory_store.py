"""
Magasin vectoriel en mémoire basé sur numpy.

Backend par défaut: une matrice `float32` dont chaque ligne est un vecteur normalisé. La recherche
est un produit matrice-vecteur (similarité cosinus pour des vecteurs L2-normalisés).
"""

from __future__ import annotations

import time

import numpy as np

from intake.infra.monitoring.metrics import VECSTORE_OP_LATENCY
from intake.infra.vecstores.base import VectorStore


class MemoryVectorStore(VectorStore):
    """Magasin vectoriel en mémoire (recherche exhaustive)."""

    backend = "memory"

    def __init__(self) -> None:
        """Initialise un magasin vide."""
        self._ids: list[str] = []
        self._pos: dict[str, int] = {}
        self._matrix: np.ndarray | None = None

    def add(self, ids: list[str], vectors: list[list[float]]) -> int:
        """
        Ajoute des vecteurs; un id déjà présent voit son vecteur remplacé.

        Args:
            ids: Identifiants des vecteurs.
            vectors: Vecteurs de même dimension.

        Returns:
            int: Nombre de vecteurs indexés.
        """
        if not ids:
            return 0
        if len(ids) != len(vectors):
            raise ValueError("ids and vectors must have the same length")
        start = time.perf_counter()
        xb = np.asarray(vectors, dtype="float32")
        if self._matrix is not None and xb.shape[1] != self._matrix.shape[1]:
            raise ValueError(
                f"dimension mismatch: expected {self._matrix.shape[1]}, got {xb.shape[1]}"
            )
        latest = dict(zip(ids, xb, strict=True))
        new_rows: list[np.ndarray] = []
        for item_id, row in latest.items():
            pos = self._pos.get(item_id)
            if pos is not None and self._matrix is not None:
                self._matrix[pos] = row
                continue
            self._pos[item_id] = len(self._ids)
            self._ids.append(item_id)
            new_rows.append(row)
        if new_rows:
            stacked = np.vstack(new_rows)
            self._matrix = stacked if self._matrix is None else np.vstack([self._matrix, stacked])
        VECSTORE_OP_LATENCY.labels(op="index", backend=self.backend).observe(
            time.perf_counter() - start
        )
        return len(latest)

    def search(self, vector: list[float], k: int) -> list[tuple[str, float]]:
        """
        Recherche les `k` vecteurs les plus proches.

        Args:
            vector: Vecteur requête normalisé.
            k: Nombre maximal de résultats.

        Returns:
            list[tuple[str, float]]: Couples `(id, score)` triés par score décroissant.
        """
        if self._matrix is None or not self._ids or k <= 0:
            return []
        start = time.perf_counter()
        q = np.asarray(vector, dtype="float32")
        scores = self._matrix @ q
        k = min(k, len(self._ids))
        # tri stable: à score égal, ordre d'insertion
        order = np.argsort(-scores, kind="stable")[:k]
        results = [(self._ids[i], float(scores[i])) for i in order]
        VECSTORE_OP_LATENCY.labels(op="search", backend=self.backend).observe(
            time.perf_counter() - start
        )
        return results

    def remove(self, ids: list[str]) -> int:
        """Supprime des vecteurs par id."""
        positions = sorted({self._pos[i] for i in ids if i in self._pos})
        if not positions or self._matrix is None:
            return 0
        keep = np.ones(len(self._ids), dtype=bool)
        keep[positions] = False
        self._matrix = self._matrix[keep]
        self._ids = [i for i, k in zip(self._ids, keep, strict=True) if k]
        self._pos = {item_id: n for n, item_id in enumerate(self._ids)}
        if not self._ids:
            self._matrix = None
        return len(positions)

    def count(self) -> int:
        """Nombre de vecteurs stockés."""
        return len(self._ids)

    def __contains__(self, item_id: object) -> bool:
        return item_id in self._pos
