"""Quality gate multi-étapes pour les items candidats.

Objectif du module
------------------
Évaluer un item avant son admission dans le store de contenu:

1. structure (champs, longueurs, `?` final, tags uniques): tout écart est éliminatoire;
2. doublons face au corpus existant (index de similarité);
3. qualité du contenu (placeholders, question générique, réponse courte, code, explication);
4. cohérence de la difficulté;
5. pertinence vis-à-vis du canal;
6. médias (diagramme, URLs vidéo, joignabilité optionnelle).

Le score global est une moyenne pondérée arrondie au demi supérieur, plafonnée à 40 en présence
d'un problème bloquant et nulle si la structure est invalide. La décision est `approved` au-dessus
du seuil, `needs_review` dans la zone grise `[seuil - 15, seuil)`, `rejected` en dessous; une
structure invalide est toujours rejetée, quel que soit le seuil.
"""

from __future__ import annotations

import math
import re
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal

import structlog

from intake.core.constants import (
    ADVANCED_ANSWER_MIN_LEN,
    ADVANCED_INDICATORS,
    ADVANCED_QUESTION_MIN_LEN,
    ANSWER_MAX_LEN,
    ANSWER_MIN_LEN,
    BEGINNER_INDICATORS,
    BEGINNER_QUESTION_MAX_LEN,
    BLOCKING_SCORE_CAP,
    CHANNEL_KEYWORDS,
    CODE_EXPECTED_ANSWER_LEN,
    CODE_TOKENS_PATTERN,
    DEFAULT_QUALITY_WEIGHTS,
    DEFAULT_TECHNICAL_CHANNELS,
    DIAGRAM_MIN_LINES,
    DIAGRAM_STARTERS,
    DIAGRAM_SYNTAX_PENALTY,
    DIAGRAM_TOO_SIMPLE_PENALTY,
    DIFFICULTY_LENGTH_PENALTY,
    DIFFICULTY_MISMATCH_PENALTY,
    EXPLANATION_EXPECTED_ANSWER_LEN,
    INDICATOR_MISMATCH_COUNT,
    MAX_SCORE,
    MISSING_CODE_PENALTY,
    MISSING_EXPLANATION_PENALTY,
    PLACEHOLDER_PATTERNS,
    PLACEHOLDER_PENALTY,
    POTENTIAL_DUPLICATE_SIMILARITY,
    PREVIEW_LEN,
    QUESTION_MAX_LEN,
    QUESTION_MIN_LEN,
    RELEVANCE_MILD_PENALTY,
    RELEVANCE_MILD_RATIO,
    RELEVANCE_STRONG_PENALTY,
    RELEVANCE_STRONG_RATIO,
    SHORT_ANSWER_LEN,
    SHORT_ANSWER_PENALTY,
    UNKNOWN_CHANNEL_RELEVANCE,
    VAGUE_PENALTY,
    VAGUE_QUESTION_MAX_LEN,
    VAGUE_STARTERS,
    VIDEO_URL_PATTERN,
    VIDEO_URL_PENALTY,
)
from intake.domain.models import (
    ContentItem,
    Decision,
    PotentialDuplicate,
    QualityScoreCard,
    SubScores,
)
from intake.domain.similarity_index import SimilarityIndex
from intake.infra.monitoring.metrics import GATE_DECISIONS, GATE_SCORE
from intake.services.embedding_provider import EmbeddingProvider

_PLACEHOLDER_RES = [re.compile(p, re.IGNORECASE) for p in PLACEHOLDER_PATTERNS]
_VAGUE_RES = [re.compile(p, re.IGNORECASE) for p in VAGUE_STARTERS]
_CODE_RE = re.compile(CODE_TOKENS_PATTERN)
_VIDEO_RE = re.compile(VIDEO_URL_PATTERN)

UrlChecker = Callable[[str], bool]


def round_half_up(value: float | Decimal) -> int:
    """Arrondi au demi supérieur (`95.5 -> 96`), indépendant de l'arrondi bancaire de Python."""
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


@dataclass
class StageResult:
    """Résultat d'une étape de validation."""

    score: int = MAX_SCORE
    issues: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


@dataclass
class DuplicateStageResult(StageResult):
    """Résultat de l'étape doublons, avec la similarité maximale observée."""

    max_similarity: float = 0.0
    potential_duplicates: list[PotentialDuplicate] = field(default_factory=list)


@dataclass
class GateContext:
    """Contexte d'évaluation.

    Attributes:
        corpus: Items existants ou index déjà alimenté; `None` pour un corpus vide.
        channel: Canal cible (défaut: celui de l'item).
        difficulty: Difficulté cible (défaut: celle de l'item).
        pass_threshold: Seuil d'admission (défaut: celui de la gate).
    """

    corpus: Sequence[ContentItem] | SimilarityIndex | None = None
    channel: str | None = None
    difficulty: str | None = None
    pass_threshold: int | None = None


def validate_structure(item: ContentItem) -> StageResult:
    """Vérifie les champs obligatoires et leurs bornes; toute anomalie est bloquante."""
    issues: list[str] = []
    q = item.question or ""
    a = item.answer or ""
    if not q.strip():
        issues.append("Missing or invalid question text")
    if not a.strip():
        issues.append("Missing or invalid answer")
    if q:
        if len(q) < QUESTION_MIN_LEN:
            issues.append(f"Question too short (min {QUESTION_MIN_LEN} chars)")
        if len(q) > QUESTION_MAX_LEN:
            issues.append(f"Question too long (max {QUESTION_MAX_LEN} chars)")
        if not q.strip().endswith("?"):
            issues.append("Question must end with ?")
    if a:
        if len(a) < ANSWER_MIN_LEN:
            issues.append(f"Answer too short (min {ANSWER_MIN_LEN} chars)")
        if len(a) > ANSWER_MAX_LEN:
            issues.append(f"Answer too long (max {ANSWER_MAX_LEN} chars)")
    if item.tags is not None and len(set(item.tags)) != len(item.tags):
        issues.append("Tags must be unique")
    return StageResult(score=MAX_SCORE if not issues else 0, issues=issues)


def score_duplicates(
    matches: Sequence[tuple[str, str, float]],
    blocking_similarity: float = 0.90,
    warning_similarity: float = 0.80,
) -> DuplicateStageResult:
    """Calcule le sous-score doublons à partir des voisins `(id, question, similarité)`.

    Corpus vide: 100. Sinon `round((1 - max) * 100)`; au-delà de `blocking_similarity` la
    similarité est bloquante, au-delà de `warning_similarity` elle produit un avertissement.
    """
    if not matches:
        return DuplicateStageResult(score=MAX_SCORE)
    max_sim = max(0.0, max(s for _, _, s in matches))
    result = DuplicateStageResult(
        score=round_half_up((1 - max_sim) * 100), max_similarity=max_sim
    )
    pct = round_half_up(max_sim * 100)
    if max_sim > blocking_similarity:
        result.issues.append(f"Very similar to existing question ({pct}% match)")
    elif max_sim > warning_similarity:
        result.warnings.append(f"Similar to existing question ({pct}% match)")
    result.potential_duplicates = [
        PotentialDuplicate(id=i, question=q[:PREVIEW_LEN], similarity=round_half_up(s * 100))
        for i, q, s in matches
        if s > POTENTIAL_DUPLICATE_SIMILARITY
    ]
    return result


def validate_content(
    item: ContentItem,
    channel: str,
    difficulty: str,
    technical_channels: Sequence[str] = DEFAULT_TECHNICAL_CHANNELS,
) -> StageResult:
    """Pénalise placeholders, questions génériques, réponses pauvres."""
    result = StageResult()
    q = item.question or ""
    a = item.answer or ""
    if any(p.search(q) or p.search(a) for p in _PLACEHOLDER_RES):
        result.issues.append("Contains placeholder content")
        result.score -= PLACEHOLDER_PENALTY
    is_vague = any(p.search(q) for p in _VAGUE_RES) and len(q) < VAGUE_QUESTION_MAX_LEN
    if is_vague and difficulty != "beginner":
        result.warnings.append("Question may be too generic")
        result.score -= VAGUE_PENALTY
    if len(a) < SHORT_ANSWER_LEN:
        result.warnings.append("Answer could be more detailed")
        result.score -= SHORT_ANSWER_PENALTY
    if channel in technical_channels and not _CODE_RE.search(a) and len(a) > CODE_EXPECTED_ANSWER_LEN:
        result.warnings.append("Technical answer could benefit from code examples")
        result.score -= MISSING_CODE_PENALTY
    if not item.explanation and len(a) < EXPLANATION_EXPECTED_ANSWER_LEN:
        result.warnings.append("Consider adding an explanation")
        result.score -= MISSING_EXPLANATION_PENALTY
    result.score = max(0, result.score)
    return result


def validate_difficulty(item: ContentItem, difficulty: str) -> StageResult:
    """Vérifie que le vocabulaire et la longueur correspondent au niveau annoncé."""
    result = StageResult()
    q = item.question or ""
    a = item.answer or ""
    combined = f"{q.lower()} {a.lower()}"
    beginner = sum(1 for i in BEGINNER_INDICATORS if i in combined)
    advanced = sum(1 for i in ADVANCED_INDICATORS if i in combined)
    if difficulty == "beginner":
        if advanced > INDICATOR_MISMATCH_COUNT and beginner == 0:
            result.warnings.append("Content seems too advanced for beginner level")
            result.score -= DIFFICULTY_MISMATCH_PENALTY
        if len(q) > BEGINNER_QUESTION_MAX_LEN:
            result.warnings.append("Beginner questions should be concise")
            result.score -= DIFFICULTY_LENGTH_PENALTY
    elif difficulty == "advanced":
        if beginner > INDICATOR_MISMATCH_COUNT and advanced == 0:
            result.warnings.append("Content seems too basic for advanced level")
            result.score -= DIFFICULTY_MISMATCH_PENALTY
        if len(q) < ADVANCED_QUESTION_MIN_LEN:
            result.warnings.append("Advanced questions should be more detailed")
            result.score -= DIFFICULTY_LENGTH_PENALTY
        if len(a) < ADVANCED_ANSWER_MIN_LEN:
            result.warnings.append("Advanced answers should be comprehensive")
            result.score -= DIFFICULTY_LENGTH_PENALTY
    result.score = max(0, result.score)
    return result


def validate_relevance(
    item: ContentItem,
    channel: str,
    channel_keywords: Mapping[str, Sequence[str]] = CHANNEL_KEYWORDS,
) -> StageResult:
    """Mesure la part des mots-clés du canal présents dans la question et la réponse."""
    keywords = channel_keywords.get(channel) or ()
    if not keywords:
        return StageResult(
            score=UNKNOWN_CHANNEL_RELEVANCE, warnings=["Channel keywords not defined"]
        )
    result = StageResult()
    combined = f"{item.question or ''} {item.answer or ''}".lower()
    ratio = sum(1 for kw in keywords if kw in combined) / len(keywords)
    if ratio < RELEVANCE_STRONG_RATIO:
        result.warnings.append("Question may not be relevant to this channel")
        result.score -= RELEVANCE_STRONG_PENALTY
    elif ratio < RELEVANCE_MILD_RATIO:
        result.warnings.append("Question has limited channel-specific content")
        result.score -= RELEVANCE_MILD_PENALTY
    return result


def is_valid_video_url(url: str | None) -> bool:
    """Vrai pour une URL YouTube de forme watch, short ou embed."""
    return bool(url) and bool(_VIDEO_RE.search(url or ""))


def validate_media(item: ContentItem, url_checker: UrlChecker | None = None) -> StageResult:
    """Contrôle le diagramme et les URLs vidéo (joignabilité si `url_checker` est fourni)."""
    result = StageResult()
    if item.diagram:
        lines = [
            line
            for line in item.diagram.strip().split("\n")
            if line.strip() and not line.strip().startswith("%%")
        ]
        if len(lines) < DIAGRAM_MIN_LINES:
            result.warnings.append("Diagram is too simple")
            result.score -= DIAGRAM_TOO_SIMPLE_PENALTY
        first = lines[0].lower() if lines else ""
        if not any(s in first for s in DIAGRAM_STARTERS):
            result.warnings.append("Diagram may have invalid syntax")
            result.score -= DIAGRAM_SYNTAX_PENALTY
    if item.videos:
        for label, url in (("Short", item.videos.short), ("Long", item.videos.long)):
            if not url:
                continue
            if not is_valid_video_url(url):
                result.warnings.append(f"{label} video URL may be invalid")
                result.score -= VIDEO_URL_PENALTY
            elif url_checker is not None and not url_checker(url):
                result.warnings.append(f"{label} video URL is unreachable")
                result.score -= VIDEO_URL_PENALTY
    result.score = max(0, result.score)
    return result


def decide(overall: int, pass_threshold: int, review_buffer: int = 15) -> Decision:
    """Décision finale à partir du score global."""
    if overall >= pass_threshold:
        return "approved"
    if overall >= pass_threshold - review_buffer:
        return "needs_review"
    return "rejected"


class QualityGate:
    """Quality gate: enchaîne les étapes de validation et produit une `QualityScoreCard`."""

    def __init__(
        self,
        provider: EmbeddingProvider | None = None,
        weights: Mapping[str, float] | None = None,
        pass_threshold: int = 70,
        review_buffer: int = 15,
        duplicate_threshold: float = 0.90,
        near_duplicate_threshold: float = 0.80,
        technical_channels: Sequence[str] = DEFAULT_TECHNICAL_CHANNELS,
        url_checker: UrlChecker | None = None,
    ) -> None:
        """Initialise la gate.

        Args:
            provider: Fournisseur d'embeddings utilisé quand le corpus est une liste d'items.
            weights: Pondération des cinq sous-scores (somme = 1).
            pass_threshold: Seuil d'admission par défaut.
            review_buffer: Largeur de la zone grise sous le seuil.
            duplicate_threshold: Similarité au-delà de laquelle un doublon est bloquant.
            near_duplicate_threshold: Similarité au-delà de laquelle un avertissement est émis.
            technical_channels: Canaux où des exemples de code sont attendus.
            url_checker: Vérificateur de joignabilité des URLs vidéo (optionnel).
        """
        weights = dict(weights or DEFAULT_QUALITY_WEIGHTS)
        missing = set(DEFAULT_QUALITY_WEIGHTS) - set(weights)
        if missing:
            raise ValueError(f"missing weights: {sorted(missing)}")
        if not math.isclose(sum(weights[k] for k in DEFAULT_QUALITY_WEIGHTS), 1.0, abs_tol=1e-6):
            raise ValueError("quality weights must sum to 1.0")
        self.provider = provider or EmbeddingProvider()
        self.weights = weights
        self.pass_threshold = pass_threshold
        self.review_buffer = review_buffer
        self.duplicate_threshold = duplicate_threshold
        self.near_duplicate_threshold = near_duplicate_threshold
        self.technical_channels = tuple(technical_channels)
        self.url_checker = url_checker
        self._log = structlog.get_logger(__name__).bind(component="quality_gate")

    def _neighbours(
        self, item: ContentItem, corpus: Sequence[ContentItem] | SimilarityIndex | None
    ) -> list[tuple[str, str, float]]:
        if corpus is None:
            return []
        if isinstance(corpus, SimilarityIndex):
            index = corpus
        else:
            others = [c for c in corpus if c.id != item.id]
            if not others:
                return []
            index = SimilarityIndex(self.provider)
            index.index(others)
        if index.count() == 0:
            return []
        matches = index.find_similar(item, threshold=0.0)
        return [(m.id, m.question, m.score) for m in matches]

    def aggregate(self, scores: SubScores, structure_valid: bool, blocking: bool) -> int:
        """Score global: 0 si structure invalide, plafonné si bloquant, sinon moyenne pondérée."""
        if not structure_valid:
            return 0
        if blocking:
            return min(BLOCKING_SCORE_CAP, scores.duplicate)
        total = sum(
            Decimal(str(getattr(scores, k))) * Decimal(str(self.weights[k]))
            for k in DEFAULT_QUALITY_WEIGHTS
        )
        return round_half_up(total)

    def evaluate(self, item: ContentItem, context: GateContext | None = None) -> QualityScoreCard:
        """Évalue un item candidat et retourne sa fiche de score."""
        ctx = context or GateContext()
        channel = ctx.channel if ctx.channel is not None else item.channel
        difficulty = ctx.difficulty if ctx.difficulty is not None else item.difficulty
        threshold = ctx.pass_threshold if ctx.pass_threshold is not None else self.pass_threshold

        structure = validate_structure(item)
        dup = score_duplicates(
            self._neighbours(item, ctx.corpus),
            blocking_similarity=self.duplicate_threshold,
            warning_similarity=self.near_duplicate_threshold,
        )
        content = validate_content(item, channel, difficulty, self.technical_channels)
        diff = validate_difficulty(item, difficulty)
        relevance = validate_relevance(item, channel)
        media = validate_media(item, self.url_checker)

        stages: list[StageResult] = [structure, dup, content, diff, relevance, media]
        issues = [i for s in stages for i in s.issues]
        warnings = [w for s in stages for w in s.warnings]
        scores = SubScores(
            duplicate=dup.score,
            content=content.score,
            difficulty=diff.score,
            relevance=relevance.score,
            media=media.score,
        )
        structure_valid = not structure.issues
        overall = self.aggregate(scores, structure_valid, blocking=bool(issues))
        decision = decide(overall, threshold, self.review_buffer) if structure_valid else "rejected"

        GATE_DECISIONS.labels(decision=decision).inc()
        GATE_SCORE.observe(overall)
        self._log.info(
            "quality_gate_decision",
            item_id=item.id,
            decision=decision,
            overall=overall,
            issues=len(issues),
            warnings=len(warnings),
        )
        return QualityScoreCard(
            item_id=item.id,
            structure_valid=structure_valid,
            scores=scores,
            issues=issues,
            warnings=warnings,
            potential_duplicates=dup.potential_duplicates,
            overall_score=overall,
            pass_threshold=threshold,
            decision=decision,
        )
