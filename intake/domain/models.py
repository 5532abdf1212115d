"""
Entités du domaine de l'intake de contenu.

Ce module définit les modèles Pydantic manipulés par la quality gate, le détecteur de doublons et
le processeur de feedback: items de contenu, fiches de score, enregistrements de similarité,
clusters, rapports externes et entrées du registre d'idempotence.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

Difficulty = Literal["beginner", "intermediate", "advanced"]
ItemStatus = Literal["active", "disabled"]
SimilarityClass = Literal["duplicate", "near-duplicate", "unique"]
ClusterRecommendation = Literal["merge", "review"]
Decision = Literal["approved", "needs_review", "rejected"]
FeedbackKind = Literal["improve", "rewrite", "disable"]
LedgerStatus = Literal["processing", "completed", "failed"]


class VideoRefs(BaseModel):
    """Références vidéo optionnelles d'un item (format court et format long)."""

    short: str | None = None
    long: str | None = None


class ContentItem(BaseModel):
    """
    Item de contenu question/réponse évalué par le pipeline.

    Un item n'est jamais supprimé: l'action `disable` positionne `status="disabled"`.
    """

    id: str
    question: str = ""
    answer: str = ""
    explanation: str | None = None
    diagram: str | None = None
    tags: list[str] | None = None
    difficulty: Difficulty = "intermediate"
    channel: str = ""
    sub_channel: str | None = None
    videos: VideoRefs | None = None
    status: ItemStatus = "active"
    last_updated: datetime | None = None


class SimilarMatch(BaseModel):
    """Résultat d'une recherche de voisins dans l'index de similarité."""

    id: str
    score: float
    channel: str = ""
    question: str = ""


class SimilarityRecord(BaseModel):
    """Paire d'items avec leur similarité cosinus et leur classification."""

    id1: str
    id2: str
    similarity: float
    classification: SimilarityClass
    channel: str = ""
    question1: str = ""
    question2: str = ""


class DuplicateCluster(BaseModel):
    """Groupe d'au moins deux items liés directement ou transitivement comme doublons."""

    cluster_id: int
    item_ids: list[str]
    recommendation: ClusterRecommendation

    @property
    def size(self) -> int:
        """Nombre d'items du cluster."""
        return len(self.item_ids)


class DuplicateDetection(BaseModel):
    """Paires détectées sur un lot, séparées par classification."""

    duplicates: list[SimilarityRecord] = Field(default_factory=list)
    near_duplicates: list[SimilarityRecord] = Field(default_factory=list)
    failed_ids: list[str] = Field(default_factory=list)


class PotentialDuplicate(BaseModel):
    """Item existant proche d'un candidat, tel que rapporté par la quality gate."""

    id: str
    question: str = ""
    similarity: int


class SubScores(BaseModel):
    """Les cinq sous-scores nommés (0-100) de la quality gate."""

    duplicate: int = 0
    content: int = 0
    difficulty: int = 0
    relevance: int = 0
    media: int = 0


class QualityScoreCard(BaseModel):
    """Fiche de score produite par une évaluation de la quality gate."""

    item_id: str
    structure_valid: bool
    scores: SubScores
    issues: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    potential_duplicates: list[PotentialDuplicate] = Field(default_factory=list)
    overall_score: int
    pass_threshold: int
    decision: Decision

    @property
    def approved(self) -> bool:
        """Indique si l'item est admis."""
        return self.decision == "approved"


class FeedbackReport(BaseModel):
    """Rapport externe déposé dans le tracker: `{id, title, body, labels[]}`."""

    id: str
    title: str = ""
    body: str = ""
    labels: list[str] = Field(default_factory=list)
    url: str | None = None


class ParsedReport(BaseModel):
    """Champs structurés extraits du corps d'un rapport."""

    report_id: str
    item_id: str
    kind: FeedbackKind
    note: str | None = None


class RewriteResult(BaseModel):
    """Réponse du collaborateur de réécriture; chaque champ est optionnel."""

    question: str | None = None
    answer: str | None = None
    explanation: str | None = None
    diagram: str | None = None
    tags: list[str] | None = None

    def is_empty(self) -> bool:
        """Vrai si le collaborateur n'a rien renvoyé d'exploitable."""
        return not any([self.question, self.answer, self.explanation, self.diagram, self.tags])


class LedgerEntry(BaseModel):
    """Entrée du registre d'idempotence pour un rapport."""

    report_id: str
    item_id: str | None = None
    kind: str | None = None
    status: LedgerStatus = "processing"
    processed_at: datetime
    completed_at: datetime | None = None
    result: dict[str, Any] | None = None
    error: str | None = None


class FeedbackResult(BaseModel):
    """Issue du traitement d'un rapport."""

    report_id: str
    item_id: str | None = None
    kind: FeedbackKind | None = None
    success: bool
    error: str | None = None
    summary: str = ""


class FeedbackRunSummary(BaseModel):
    """Bilan d'une exécution du processeur de feedback."""

    fetched: int = 0
    skipped: int = 0
    results: list[FeedbackResult] = Field(default_factory=list)
    error: str | None = None

    @property
    def processed(self) -> int:
        """Nombre de rapports traités (succès ou échec)."""
        return len(self.results)

    @property
    def succeeded(self) -> int:
        """Nombre de rapports traités avec succès."""
        return sum(1 for r in self.results if r.success)

    @property
    def failed(self) -> int:
        """Nombre de rapports clos en erreur."""
        return sum(1 for r in self.results if not r.success)
