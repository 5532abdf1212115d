"""Détection de doublons et regroupement en clusters.

Objectif du module
------------------
- Comparer chaque item d'un lot à l'index de similarité et classer les paires
  (`duplicate` ≥ 0.90, `near-duplicate` ≥ 0.80 par défaut).
- Regrouper les doublons, directs ou transitifs, via Union-Find (union par rang, compression de
  chemin).

Un item déjà traité n'est plus comparé (ensemble `seen`): chaque paire non ordonnée n'apparaît
qu'une fois et l'ensemble des paires ne dépend pas de l'ordre du lot.
"""

from __future__ import annotations

from collections.abc import Iterable

import structlog

from intake.core.constants import PREVIEW_LEN
from intake.domain.models import (
    ContentItem,
    DuplicateCluster,
    DuplicateDetection,
    SimilarityClass,
    SimilarityRecord,
)
from intake.domain.similarity_index import SimilarityIndex
from intake.infra.monitoring.metrics import DUPLICATE_PAIRS, SIMILARITY_INDEX_FAILURES

MERGE_MIN_SIZE = 3


def classify_similarity(
    similarity: float, duplicate_threshold: float = 0.90, near_threshold: float = 0.80
) -> SimilarityClass:
    """Classe une similarité selon les seuils configurés."""
    if similarity >= duplicate_threshold:
        return "duplicate"
    if similarity >= near_threshold:
        return "near-duplicate"
    return "unique"


class DuplicateDetector:
    """Détecteur de doublons adossé à un `SimilarityIndex`."""

    def __init__(
        self,
        index: SimilarityIndex,
        duplicate_threshold: float = 0.90,
        near_threshold: float = 0.80,
    ) -> None:
        """Initialise le détecteur.

        Args:
            index: Index de similarité déjà alimenté avec le corpus.
            duplicate_threshold: Seuil de la classe `duplicate`.
            near_threshold: Seuil de la classe `near-duplicate`.
        """
        if near_threshold > duplicate_threshold:
            raise ValueError("near_threshold must not exceed duplicate_threshold")
        self.index = index
        self.duplicate_threshold = duplicate_threshold
        self.near_threshold = near_threshold
        self._log = structlog.get_logger(__name__).bind(component="duplicate_detector")

    def classify(self, similarity: float) -> SimilarityClass:
        """Classe une similarité avec les seuils de l'instance."""
        return classify_similarity(similarity, self.duplicate_threshold, self.near_threshold)

    def detect(self, items: Iterable[ContentItem]) -> DuplicateDetection:
        """Cherche les paires doublons / quasi-doublons d'un lot d'items indexés."""
        result = DuplicateDetection()
        seen: set[str] = set()
        for item in items:
            if item.id in seen:
                continue
            try:
                matches = self.index.find_similar(
                    item, threshold=self.near_threshold, exclude_ids=seen
                )
            except Exception as exc:
                SIMILARITY_INDEX_FAILURES.labels(op="lookup").inc()
                result.failed_ids.append(item.id)
                self._log.error("duplicate_lookup_failed", item_id=item.id, error=str(exc))
                seen.add(item.id)
                continue
            for match in matches:
                classification = self.classify(match.score)
                if classification == "unique":
                    continue
                record = SimilarityRecord(
                    id1=item.id,
                    id2=match.id,
                    similarity=match.score,
                    classification=classification,
                    channel=item.channel,
                    question1=item.question[:PREVIEW_LEN],
                    question2=match.question,
                )
                DUPLICATE_PAIRS.labels(classification=classification).inc()
                if classification == "duplicate":
                    result.duplicates.append(record)
                else:
                    result.near_duplicates.append(record)
            seen.add(item.id)
        self._log.info(
            "duplicates_detected",
            duplicates=len(result.duplicates),
            near_duplicates=len(result.near_duplicates),
            failed=len(result.failed_ids),
        )
        return result


class UnionFind:
    """Structure Union-Find avec union par rang et compression de chemin."""

    def __init__(self, elements: Iterable[str] = ()) -> None:
        self._parent: dict[str, str] = {}
        self._rank: dict[str, int] = {}
        for e in elements:
            self.add(e)

    def add(self, x: str) -> None:
        """Ajoute un singleton s'il n'existe pas déjà."""
        if x not in self._parent:
            self._parent[x] = x
            self._rank[x] = 0

    def find(self, x: str) -> str:
        """Retourne le représentant de `x` en compressant le chemin parcouru."""
        self.add(x)
        root = x
        while self._parent[root] != root:
            root = self._parent[root]
        while self._parent[x] != root:
            self._parent[x], x = root, self._parent[x]
        return root

    def union(self, x: str, y: str) -> None:
        """Fusionne les ensembles de `x` et `y`."""
        px, py = self.find(x), self.find(y)
        if px == py:
            return
        if self._rank[px] < self._rank[py]:
            self._parent[px] = py
        elif self._rank[px] > self._rank[py]:
            self._parent[py] = px
        else:
            self._parent[py] = px
            self._rank[px] += 1

    def groups(self) -> list[list[str]]:
        """Ensembles courants, membres triés."""
        by_root: dict[str, list[str]] = {}
        for x in self._parent:
            by_root.setdefault(self.find(x), []).append(x)
        return [sorted(g) for g in by_root.values()]


def cluster_duplicates(
    item_ids: Iterable[str], duplicate_pairs: Iterable[SimilarityRecord]
) -> list[DuplicateCluster]:
    """Regroupe les items liés par des paires doublons.

    Les singletons sont écartés. Les clusters sont triés par plus petit id et numérotés à partir
    de 1; la recommandation est `merge` au-delà de deux items, `review` sinon. Le résultat ne
    dépend pas de l'ordre des paires.
    """
    uf = UnionFind(item_ids)
    for pair in duplicate_pairs:
        uf.union(pair.id1, pair.id2)
    groups = sorted((g for g in uf.groups() if len(g) > 1), key=lambda g: g[0])
    return [
        DuplicateCluster(
            cluster_id=n,
            item_ids=g,
            recommendation="merge" if len(g) >= MERGE_MIN_SIZE else "review",
        )
        for n, g in enumerate(groups, start=1)
    ]
