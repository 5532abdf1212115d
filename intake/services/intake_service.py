"""Service d'admission des candidats.

Évalue un lot de candidats face au corpus existant. Les items approuvés sont enregistrés dans le
store de contenu et rejoignent l'index pour la suite du lot: deux candidats quasi identiques
soumis ensemble ne sont donc pas admis tous les deux.
"""

from __future__ import annotations

from collections.abc import Sequence

import structlog
from pydantic import BaseModel, Field

from intake.domain.models import ContentItem, QualityScoreCard
from intake.domain.quality_gate import GateContext, QualityGate
from intake.domain.similarity_index import SimilarityIndex
from intake.infra.content_repo import ContentRepository


class IntakeOutcome(BaseModel):
    """Issue de l'admission d'un candidat."""

    item_id: str
    card: QualityScoreCard | None = None
    saved: bool = False
    error: str | None = None


class IntakeBatchResult(BaseModel):
    """Bilan d'un lot d'admission."""

    outcomes: list[IntakeOutcome] = Field(default_factory=list)
    deferred: list[str] = Field(default_factory=list)

    def ids_with(self, decision: str) -> list[str]:
        """Ids dont la décision vaut `decision`."""
        return [o.item_id for o in self.outcomes if o.card and o.card.decision == decision]


class IntakeService:
    """Admission d'items candidats dans le store de contenu."""

    def __init__(
        self,
        gate: QualityGate,
        content: ContentRepository,
        index: SimilarityIndex,
        max_items_per_run: int = 100,
    ) -> None:
        self.gate = gate
        self.content = content
        self.index = index
        self.max_items_per_run = max_items_per_run
        self._log = structlog.get_logger(__name__).bind(component="intake_service")

    def load_corpus(self) -> int:
        """Indexe les items actifs du store de contenu."""
        items = [i for i in self.content.list_items() if i.status == "active"]
        return self.index.index(items)

    def submit(self, candidates: Sequence[ContentItem]) -> IntakeBatchResult:
        """Évalue les candidats (au plus `max_items_per_run`) et enregistre les items approuvés."""
        batch = list(candidates[: self.max_items_per_run])
        result = IntakeBatchResult(deferred=[c.id for c in candidates[self.max_items_per_run :]])
        for candidate in batch:
            outcome = IntakeOutcome(item_id=candidate.id)
            try:
                card = self.gate.evaluate(candidate, GateContext(corpus=self.index))
                outcome.card = card
                if card.approved:
                    self.content.save_item(candidate)
                    self.index.index([candidate])
                    outcome.saved = True
            except Exception as exc:
                outcome.error = str(exc)
                self._log.error("intake_candidate_failed", item_id=candidate.id, error=str(exc))
            result.outcomes.append(outcome)
        self._log.info(
            "intake_batch_finished",
            submitted=len(batch),
            approved=len(result.ids_with("approved")),
            needs_review=len(result.ids_with("needs_review")),
            rejected=len(result.ids_with("rejected")),
            deferred=len(result.deferred),
        )
        return result
