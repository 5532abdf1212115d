"""Définition et chargement des paramètres de configuration du pipeline d'intake.

Objectif du module
------------------
- Centraliser les paramètres (env/.env) via Pydantic Settings
- Résoudre le fichier `.env` à utiliser selon la stratégie: ENV_FILE > .env.{APP_ENV} > .env
"""

import os
from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from intake.core.constants import DEFAULT_QUALITY_WEIGHTS, DEFAULT_TECHNICAL_CHANNELS

# Détermination du fichier .env à utiliser avec priorité:
# 1) ENV_FILE (chemin explicite)
# 2) .env.{APP_ENV} si présent
# 3) .env (défaut)
_cwd = Path.cwd()
_env_file_from_env = os.getenv("ENV_FILE")
if _env_file_from_env:
    _ENV_FILE_PATH = _env_file_from_env
else:
    _app_env = os.getenv("APP_ENV", "dev")
    _candidate_specific = _cwd / f".env.{_app_env}"
    _candidate_default = _cwd / ".env"
    if _candidate_specific.exists():
        _ENV_FILE_PATH = _candidate_specific
    else:
        _ENV_FILE_PATH = _candidate_default

WEIGHTS_SUM_TOLERANCE = 1e-6


class Settings(BaseSettings):
    """Modèle de configuration chargé depuis l'environnement et .env."""

    model_config = SettingsConfigDict(
        env_file=_ENV_FILE_PATH,
        env_file_encoding="utf-8",
        env_ignore_empty=True,
        case_sensitive=False,
    )
    APP_NAME: str = "content-intake"
    APP_ENV: str = "dev"
    LOG_LEVEL: str = "INFO"

    # Embeddings
    EMBEDDINGS_PROVIDER: str = "hashed"  # "hashed" | "ollama" | "openai"
    EMBEDDINGS_MODEL: str = "nomic-embed-text"
    EMBEDDINGS_URL: str = "http://localhost:11434"
    EMBEDDINGS_DIMENSIONS: int = 384
    EMBEDDINGS_BATCH_SIZE: int = 32
    EMBEDDINGS_BATCH_DELAY_S: float = 0.05
    EMBEDDINGS_MAX_WORKERS: int = 8
    EMBEDDINGS_TIMEOUT_S: float = 30.0
    OPENAI_API_KEY: str | None = None

    # Vector store
    VECTOR_BACKEND: str = "memory"  # "memory" | "faiss"
    FAISS_DATA_DIR: str | None = None

    # Duplicate detection
    DUPLICATE_THRESHOLD: float = 0.90
    NEAR_DUPLICATE_THRESHOLD: float = 0.80

    # Quality gate
    QUALITY_PASS_THRESHOLD: int = 70
    QUALITY_REVIEW_BUFFER: int = 15
    QUALITY_WEIGHTS: dict[str, float] = dict(DEFAULT_QUALITY_WEIGHTS)
    TECHNICAL_CHANNELS: list[str] = list(DEFAULT_TECHNICAL_CHANNELS)
    MEDIA_CHECK_URLS: bool = False
    MEDIA_URL_TIMEOUT_S: float = 5.0

    # Content store
    CONTENT_BACKEND: str = "memory"  # "memory" | "json" | "redis"
    CONTENT_JSON_PATH: str = "./var/content.json"
    REDIS_URL: str | None = None

    # Feedback processor
    FEEDBACK_LABEL: str = "bot:processor"
    FEEDBACK_MAX_REPORTS: int = 10
    FEEDBACK_COOLDOWN_HOURS: int = 24
    LEDGER_RETENTION_DAYS: int = 7
    CERTIFICATION_CHANNELS: list[str] = []

    # Collaborateur de réécriture (LLM)
    LLM_MODEL: str = "gpt-4o-mini"
    LLM_TIMEOUT_S: float = 300.0
    RETRY_MAX_ATTEMPTS: int = 3
    RETRY_DELAY_S: float = 10.0
    RETRY_BACKOFF: float = 1.5
    CIRCUIT_FAILURE_THRESHOLD: int = 5
    CIRCUIT_RESET_TIMEOUT_S: float = 300.0

    # Batches
    INTAKE_MAX_ITEMS_PER_RUN: int = 100
    QUALITY_SAMPLE_SIZE: int = 20
    QUALITY_SAMPLE_WORKERS: int = 4

    @field_validator("QUALITY_WEIGHTS")
    @classmethod
    def _weights_sum_to_one(cls, value: dict[str, float]) -> dict[str, float]:
        """Vérifie que les poids couvrent les cinq dimensions et somment à 1."""
        missing = set(DEFAULT_QUALITY_WEIGHTS) - set(value)
        if missing:
            raise ValueError(f"poids manquants: {sorted(missing)}")
        total = sum(value[k] for k in DEFAULT_QUALITY_WEIGHTS)
        if abs(total - 1.0) > WEIGHTS_SUM_TOLERANCE:
            raise ValueError(f"la somme des poids doit valoir 1.0 (obtenu {total})")
        return value


def get_settings() -> Settings:
    """Construit et retourne la configuration de l'application."""
    return Settings()
