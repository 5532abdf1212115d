"""
FAISS-backed vector store.

Requires `faiss-cpu` and `numpy`. Uses inner-product similarity (IndexFlatIP), which equals cosine
similarity for L2-normalised vectors. Optional persistence: `data_dir/{index.faiss, ids.json}`,
written with atomic rename after each mutation and loaded on construction.
"""

from __future__ import annotations

import json
import os
import time

import faiss  # type: ignore
import numpy as np
import structlog

from intake.infra.monitoring.metrics import VECSTORE_OP_LATENCY
from intake.infra.vecstores.base import VectorStore


class FAISSVectorStore(VectorStore):
    """
    Store vectoriel FAISS pour l'indexation et la recherche.

    Les positions FAISS suivent l'ordre de `self._ids`; `IndexFlat.remove_ids` compacte l'index en
    conservant l'ordre relatif, ce qui maintient la correspondance.
    """

    backend = "faiss"

    def __init__(self, data_dir: str | None = None) -> None:
        """
        Initialise le store, avec persistance si `data_dir` est fourni.

        Args:
            data_dir: Répertoire de persistance (optionnel).
        """
        self.index_ip: faiss.IndexFlatIP | None = None
        self._ids: list[str] = []
        self._pos: dict[str, int] = {}
        self._dir = data_dir
        self._log = structlog.get_logger(__name__).bind(component="faiss_store")
        if self._dir:
            os.makedirs(self._dir, exist_ok=True)
            self._load()

    def _ensure_index(self, dim: int) -> None:
        if self.index_ip is None:
            self.index_ip = faiss.IndexFlatIP(dim)

    def _paths(self) -> tuple[str, str]:
        assert self._dir is not None
        return os.path.join(self._dir, "index.faiss"), os.path.join(self._dir, "ids.json")

    def _save(self) -> None:
        if not self._dir or self.index_ip is None:
            return
        idx_path, ids_path = self._paths()
        try:
            tmp_idx = idx_path + ".tmp"
            faiss.write_index(self.index_ip, tmp_idx)
            os.replace(tmp_idx, idx_path)
            tmp_ids = ids_path + ".tmp"
            with open(tmp_ids, "w", encoding="utf-8") as f:
                json.dump(self._ids, f)
            os.replace(tmp_ids, ids_path)
        except OSError as exc:
            self._log.warning("faiss_snapshot_failed", path=self._dir, error=str(exc))

    def _load(self) -> None:
        idx_path, ids_path = self._paths()
        if not (os.path.exists(idx_path) and os.path.exists(ids_path)):
            return
        try:
            index = faiss.read_index(idx_path)
            with open(ids_path, encoding="utf-8") as f:
                ids = json.load(f)
        except (OSError, RuntimeError, ValueError) as exc:
            self._log.warning("faiss_snapshot_unreadable", path=self._dir, error=str(exc))
            return
        if index.ntotal != len(ids):
            self._log.warning("faiss_snapshot_inconsistent", ntotal=index.ntotal, ids=len(ids))
            return
        self.index_ip = index
        self._ids = [str(i) for i in ids]
        self._pos = {item_id: n for n, item_id in enumerate(self._ids)}

    def add(self, ids: list[str], vectors: list[list[float]]) -> int:
        """
        Indexe des vecteurs; un id déjà présent est retiré puis ré-ajouté.

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
        latest = dict(zip(ids, vectors, strict=True))
        ids = list(latest)
        xb = np.ascontiguousarray(np.asarray(list(latest.values()), dtype="float32"))
        self._ensure_index(dim=xb.shape[1])
        dim = self.index_ip.d  # type: ignore[union-attr]
        if xb.shape[1] != dim:
            raise ValueError(f"dimension mismatch: expected {dim}, got {xb.shape[1]}")
        existing = [i for i in ids if i in self._pos]
        if existing:
            self._remove_positions(existing)
        self.index_ip.add(xb)  # type: ignore[union-attr]
        for item_id in ids:
            self._pos[item_id] = len(self._ids)
            self._ids.append(item_id)
        self._save()
        VECSTORE_OP_LATENCY.labels(op="index", backend=self.backend).observe(
            time.perf_counter() - start
        )
        return len(ids)

    def search(self, vector: list[float], k: int) -> list[tuple[str, float]]:
        """
        Recherche les vecteurs les plus proches dans le store FAISS.

        Args:
            vector: Vecteur requête normalisé.
            k: Nombre maximal de résultats.

        Returns:
            list[tuple[str, float]]: Couples `(id, score)` triés par score décroissant.
        """
        if not self._ids or self.index_ip is None or k <= 0:
            return []
        start = time.perf_counter()
        k = min(k, len(self._ids))
        qx = np.asarray([vector], dtype="float32")
        distances, indices = self.index_ip.search(qx, k)
        results: list[tuple[str, float]] = []
        for score, idx in zip(distances[0], indices[0], strict=True):
            if idx == -1:
                continue
            results.append((self._ids[idx], float(score)))
        VECSTORE_OP_LATENCY.labels(op="search", backend=self.backend).observe(
            time.perf_counter() - start
        )
        return results

    def _remove_positions(self, ids: list[str]) -> int:
        positions = sorted({self._pos[i] for i in ids if i in self._pos})
        if not positions or self.index_ip is None:
            return 0
        self.index_ip.remove_ids(np.asarray(positions, dtype="int64"))
        dropped = set(positions)
        self._ids = [item_id for n, item_id in enumerate(self._ids) if n not in dropped]
        self._pos = {item_id: n for n, item_id in enumerate(self._ids)}
        return len(positions)

    def remove(self, ids: list[str]) -> int:
        """Supprime des vecteurs par id et persiste le nouvel état."""
        removed = self._remove_positions(ids)
        if removed:
            self._save()
        return removed

    def count(self) -> int:
        """Nombre de vecteurs stockés."""
        return len(self._ids)

    def __contains__(self, item_id: object) -> bool:
        return item_id in self._pos
