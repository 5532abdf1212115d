"""
Conteneur d'injection de dépendances du pipeline d'intake.

Instancie les composants (fournisseur d'embeddings, index, quality gate, stores, registre,
processeur de feedback, services) à partir des `Settings`. `get_container()` expose une instance
partagée construite à la première demande.
"""

from __future__ import annotations

from datetime import timedelta
from functools import lru_cache

import structlog

from intake.core.logging import setup_logging
from intake.core.settings import Settings, get_settings
from intake.domain.feedback_processor import FeedbackProcessor
from intake.domain.quality_gate import QualityGate
from intake.domain.similarity_index import SimilarityIndex
from intake.infra.content_repo import (
    ContentRepository,
    InMemoryContentRepo,
    JSONContentRepository,
    RedisContentRepo,
)
from intake.infra.embeddings.base import Embeddings
from intake.infra.http_clients import UrlChecker
from intake.infra.llm.openai_client import OpenAILLM
from intake.infra.llm.rewriter import LLMRewriter, Rewriter
from intake.infra.ops.ledger import FeedbackLedger
from intake.infra.ops.resilience import CircuitBreaker
from intake.infra.tracker.memory_tracker import InMemoryTracker
from intake.infra.vecstores.base import VectorStore
from intake.infra.vecstores.memory_store import MemoryVectorStore
from intake.services.duplicate_scan import DuplicateScanPipeline
from intake.services.embedding_provider import EmbeddingProvider
from intake.services.intake_service import IntakeService

log = structlog.get_logger(__name__)


def _build_primary_embeddings(settings: Settings) -> Embeddings | None:
    """Fournisseur primaire selon `EMBEDDINGS_PROVIDER`; None = schéma hashé seul."""
    provider = settings.EMBEDDINGS_PROVIDER.lower()
    try:
        if provider == "ollama":
            from intake.infra.embeddings.ollama_embedder import OllamaEmbedder

            return OllamaEmbedder(
                base_url=settings.EMBEDDINGS_URL,
                model=settings.EMBEDDINGS_MODEL,
                timeout_s=settings.EMBEDDINGS_TIMEOUT_S,
            )
        if provider == "openai":
            from intake.infra.embeddings.openai_embedder import OpenAIEmbedder

            return OpenAIEmbedder(
                api_key=settings.OPENAI_API_KEY,
                model=settings.EMBEDDINGS_MODEL,
                timeout_s=settings.EMBEDDINGS_TIMEOUT_S,
            )
    except Exception as exc:
        log.warning("embeddings_primary_unavailable", provider=provider, error=str(exc))
        return None
    if provider != "hashed":
        log.warning("embeddings_provider_unknown", provider=provider)
    return None


def _build_vector_store(settings: Settings, persistent: bool = True) -> VectorStore:
    """Store vectoriel selon `VECTOR_BACKEND`; hors persistance pour les index temporaires."""
    if settings.VECTOR_BACKEND.lower() == "faiss":
        from intake.infra.vecstores.faiss_store import FAISSVectorStore

        return FAISSVectorStore(data_dir=settings.FAISS_DATA_DIR if persistent else None)
    return MemoryVectorStore()


def _build_content_repo(settings: Settings) -> ContentRepository:
    backend = settings.CONTENT_BACKEND.lower()
    if backend == "json":
        return JSONContentRepository(path=settings.CONTENT_JSON_PATH)
    if backend == "redis":
        return RedisContentRepo(url=settings.REDIS_URL)
    return InMemoryContentRepo()


class Container:
    """Assemble les composants à partir de la configuration."""

    def __init__(self, settings: Settings | None = None) -> None:
        self.settings = settings or get_settings()
        s = self.settings

        self.embeddings = EmbeddingProvider(
            primary=_build_primary_embeddings(s),
            dimensions=s.EMBEDDINGS_DIMENSIONS,
            batch_size=s.EMBEDDINGS_BATCH_SIZE,
            batch_delay_s=s.EMBEDDINGS_BATCH_DELAY_S,
            max_workers=s.EMBEDDINGS_MAX_WORKERS,
        )
        self.index = SimilarityIndex(self.embeddings, store=_build_vector_store(s))
        self.content_repo = _build_content_repo(s)
        self.url_checker = (
            UrlChecker(timeout_s=s.MEDIA_URL_TIMEOUT_S) if s.MEDIA_CHECK_URLS else None
        )

        self.gate = QualityGate(
            provider=self.embeddings,
            weights=s.QUALITY_WEIGHTS,
            pass_threshold=s.QUALITY_PASS_THRESHOLD,
            review_buffer=s.QUALITY_REVIEW_BUFFER,
            duplicate_threshold=s.DUPLICATE_THRESHOLD,
            near_duplicate_threshold=s.NEAR_DUPLICATE_THRESHOLD,
            technical_channels=s.TECHNICAL_CHANNELS,
            url_checker=self.url_checker,
        )

        self.ledger = FeedbackLedger.from_url(s.REDIS_URL, retention_days=s.LEDGER_RETENTION_DAYS)
        self.tracker = InMemoryTracker()
        self.breaker = CircuitBreaker(
            failure_threshold=s.CIRCUIT_FAILURE_THRESHOLD,
            reset_timeout_s=s.CIRCUIT_RESET_TIMEOUT_S,
            name="rewriter",
        )
        self.rewriter = self._build_rewriter()
        self.feedback_processor = FeedbackProcessor(
            content=self.content_repo,
            ledger=self.ledger,
            tracker=self.tracker,
            rewriter=self.rewriter,
            processor_label=s.FEEDBACK_LABEL,
            max_reports=s.FEEDBACK_MAX_REPORTS,
            cooldown=timedelta(hours=s.FEEDBACK_COOLDOWN_HOURS),
            certification_channels=s.CERTIFICATION_CHANNELS,
        )

        self.duplicate_scan = DuplicateScanPipeline(
            provider=self.embeddings,
            gate=self.gate,
            duplicate_threshold=s.DUPLICATE_THRESHOLD,
            near_threshold=s.NEAR_DUPLICATE_THRESHOLD,
            store_factory=lambda: _build_vector_store(s, persistent=False),
            sample_size=s.QUALITY_SAMPLE_SIZE,
            sample_workers=s.QUALITY_SAMPLE_WORKERS,
        )
        self.intake = IntakeService(
            gate=self.gate,
            content=self.content_repo,
            index=self.index,
            max_items_per_run=s.INTAKE_MAX_ITEMS_PER_RUN,
        )
        log.info(
            "container_ready",
            embeddings=self.embeddings.model_name,
            vector_backend=self.index.store.backend,
            content_backend=s.CONTENT_BACKEND,
            ledger="redis" if s.REDIS_URL else "memory",
            rewriter=self.rewriter is not None,
        )

    def _build_rewriter(self) -> Rewriter | None:
        """Collaborateur LLM si une clé OpenAI est configurée (clé jamais journalisée)."""
        s = self.settings
        if not s.OPENAI_API_KEY:
            return None
        llm = OpenAILLM(api_key=s.OPENAI_API_KEY, model=s.LLM_MODEL, timeout_s=s.LLM_TIMEOUT_S)
        return LLMRewriter(
            llm,
            breaker=self.breaker,
            max_attempts=s.RETRY_MAX_ATTEMPTS,
            delay_s=s.RETRY_DELAY_S,
            backoff=s.RETRY_BACKOFF,
        )


@lru_cache(maxsize=1)
def get_container() -> Container:
    """Instance partagée du conteneur (logging configuré au premier appel)."""
    settings = get_settings()
    setup_logging(settings.LOG_LEVEL)
    return Container(settings)
