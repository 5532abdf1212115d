"""
Tests pour la configuration du pipeline.

Vérifie les valeurs par défaut, la surcharge par variables d'environnement et la validation des
poids de la quality gate.
"""

from __future__ import annotations

import json

import pytest
from pydantic import ValidationError

from intake.core.settings import Settings


def test_defaults() -> None:
    """Teste les seuils et backends par défaut."""
    s = Settings(_env_file=None)
    assert s.DUPLICATE_THRESHOLD == 0.90
    assert s.NEAR_DUPLICATE_THRESHOLD == 0.80
    assert s.QUALITY_PASS_THRESHOLD == 70
    assert sum(s.QUALITY_WEIGHTS.values()) == pytest.approx(1.0)
    assert s.VECTOR_BACKEND == "memory"


def test_env_overrides(monkeypatch) -> None:
    """Teste la surcharge par l'environnement, y compris un champ JSON."""
    weights = {"duplicate": 0.2, "content": 0.2, "difficulty": 0.2, "relevance": 0.2, "media": 0.2}
    monkeypatch.setenv("DUPLICATE_THRESHOLD", "0.85")
    monkeypatch.setenv("FEEDBACK_MAX_REPORTS", "3")
    monkeypatch.setenv("QUALITY_WEIGHTS", json.dumps(weights))
    s = Settings(_env_file=None)
    assert s.DUPLICATE_THRESHOLD == 0.85
    assert s.FEEDBACK_MAX_REPORTS == 3
    assert s.QUALITY_WEIGHTS == weights


def test_env_file_is_read(tmp_path, monkeypatch) -> None:
    """Teste la lecture d'un fichier .env explicite."""
    env = tmp_path / ".env.custom"
    env.write_text("EMBEDDINGS_DIMENSIONS=64\nCONTENT_BACKEND=json\n", encoding="utf-8")
    monkeypatch.delenv("EMBEDDINGS_DIMENSIONS", raising=False)
    monkeypatch.delenv("CONTENT_BACKEND", raising=False)
    s = Settings(_env_file=str(env))
    assert s.EMBEDDINGS_DIMENSIONS == 64
    assert s.CONTENT_BACKEND == "json"


@pytest.mark.parametrize(
    "weights",
    [
        {"duplicate": 0.5, "content": 0.5, "difficulty": 0.5, "relevance": 0.5, "media": 0.5},
        {"duplicate": 1.0},
    ],
)
def test_invalid_weights_are_rejected(weights: dict[str, float]) -> None:
    """Teste le refus de poids incomplets ou dont la somme diffère de 1."""
    with pytest.raises(ValidationError):
        Settings(_env_file=None, QUALITY_WEIGHTS=weights)
