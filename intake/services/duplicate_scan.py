"""Pipeline de scan des doublons sur un corpus.

Enchaîne: indexation -> détection des paires -> clusters -> échantillon qualité -> rapport.
Chaque exécution construit son propre index: seuls les items du lot sont comparés entre eux.
L'échantillon qualité (les `sample_size` premiers items) est évalué en parallèle par la quality
gate, sans corpus de comparaison: les doublons sont déjà couverts par les clusters.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor

import structlog
from pydantic import BaseModel, Field

from intake.core.constants import PREVIEW_LEN
from intake.domain.duplicates import DuplicateDetector, cluster_duplicates
from intake.domain.models import ContentItem, DuplicateCluster, SimilarityRecord
from intake.domain.quality_gate import GateContext, QualityGate, round_half_up
from intake.domain.similarity_index import SimilarityIndex
from intake.infra.vecstores.base import VectorStore
from intake.services.embedding_provider import EmbeddingProvider


class QualityIssue(BaseModel):
    """Item de l'échantillon qui n'est pas approuvé par la quality gate."""

    id: str
    question: str
    decision: str
    overall_score: int
    reasons: list[str] = Field(default_factory=list)


class ScanRecommendations(BaseModel):
    """Nombre d'actions recommandées."""

    to_merge: int = 0
    to_review: int = 0
    quality_fixes: int = 0


class DuplicateScanReport(BaseModel):
    """Rapport d'un scan de doublons."""

    total_items: int
    indexed: int
    unique_ids: list[str]
    clusters: list[DuplicateCluster]
    duplicate_pairs: list[SimilarityRecord]
    near_duplicates: list[SimilarityRecord]
    duplicate_count: int
    quality_issues: list[QualityIssue]
    duplicate_rate: int  # pourcentage entier
    threshold: float
    recommendations: ScanRecommendations


class DuplicateScanPipeline:
    """Scan complet des doublons et d'un échantillon qualité."""

    def __init__(
        self,
        provider: EmbeddingProvider,
        gate: QualityGate,
        duplicate_threshold: float = 0.90,
        near_threshold: float = 0.80,
        store_factory: Callable[[], VectorStore] | None = None,
        sample_size: int = 20,
        sample_workers: int = 4,
    ) -> None:
        if near_threshold > duplicate_threshold:
            raise ValueError("near_threshold must not exceed duplicate_threshold")
        self.provider = provider
        self.gate = gate
        self.duplicate_threshold = duplicate_threshold
        self.near_threshold = near_threshold
        self.store_factory = store_factory
        self.sample_size = sample_size
        self.sample_workers = max(1, sample_workers)
        self._log = structlog.get_logger(__name__).bind(component="duplicate_scan")

    def _quality_sample(self, items: Sequence[ContentItem]) -> list[QualityIssue]:
        sample = list(items[: self.sample_size])
        if not sample:
            return []

        def _evaluate(item: ContentItem) -> QualityIssue | None:
            try:
                card = self.gate.evaluate(item, GateContext(corpus=None))
            except Exception as exc:
                self._log.warning("quality_sample_failed", item_id=item.id, error=str(exc))
                return None
            if card.approved:
                return None
            return QualityIssue(
                id=item.id,
                question=item.question[:PREVIEW_LEN],
                decision=card.decision,
                overall_score=card.overall_score,
                reasons=card.issues + card.warnings,
            )

        with ThreadPoolExecutor(max_workers=min(self.sample_workers, len(sample))) as pool:
            results = list(pool.map(_evaluate, sample))
        return [r for r in results if r is not None]

    def run(self, items: Sequence[ContentItem]) -> DuplicateScanReport:
        """Exécute le scan et retourne le rapport."""
        store = self.store_factory() if self.store_factory is not None else None
        index = SimilarityIndex(self.provider, store=store)
        detector = DuplicateDetector(
            index,
            duplicate_threshold=self.duplicate_threshold,
            near_threshold=self.near_threshold,
        )
        indexed = index.index(items)
        detection = detector.detect(items)
        clusters = cluster_duplicates([i.id for i in items], detection.duplicates)
        in_clusters = {i for c in clusters for i in c.item_ids}
        unique_ids = [i.id for i in items if i.id not in in_clusters]
        quality_issues = self._quality_sample(items)

        total = len(items)
        duplicate_count = sum(c.size for c in clusters)
        rate = round_half_up(duplicate_count / total * 100) if total else 0
        report = DuplicateScanReport(
            total_items=total,
            indexed=indexed,
            unique_ids=unique_ids,
            clusters=clusters,
            duplicate_pairs=detection.duplicates,
            near_duplicates=detection.near_duplicates,
            duplicate_count=duplicate_count,
            quality_issues=quality_issues,
            duplicate_rate=rate,
            threshold=self.duplicate_threshold,
            recommendations=ScanRecommendations(
                to_merge=sum(1 for c in clusters if c.recommendation == "merge"),
                to_review=sum(1 for c in clusters if c.recommendation == "review"),
                quality_fixes=sum(1 for q in quality_issues if q.decision == "needs_review"),
            ),
        )
        self._log.info(
            "duplicate_scan_finished",
            total=total,
            indexed=indexed,
            clusters=len(clusters),
            duplicates=duplicate_count,
            near_duplicates=len(detection.near_duplicates),
            quality_issues=len(quality_issues),
            duplicate_rate=rate,
        )
        return report
