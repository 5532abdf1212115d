"""Configuration de test pour pytest avec gestion des chemins.

Ce module ajoute la racine du projet au sys.path pour résoudre les imports `intake...` et fournit
quelques fixtures partagées (items de contenu, fournisseur d'embeddings hors ligne).
"""

import os
import sys

import pytest
import structlog

# Ensure project root is on sys.path so that
# imports like `from intake...` resolve.
CURRENT_DIR = os.path.dirname(__file__)
PROJECT_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from intake.domain.models import ContentItem  # noqa: E402
from intake.services.embedding_provider import EmbeddingProvider  # noqa: E402


@pytest.fixture(autouse=True)
def _reset_structlog():
    """Restaure la config structlog par défaut après chaque test (évite un flux capsys fermé)."""
    yield
    structlog.reset_defaults()


@pytest.fixture
def offline_provider() -> EmbeddingProvider:
    """Fournisseur d'embeddings sans primaire (schéma hashé seul)."""
    return EmbeddingProvider(primary=None, dimensions=384)


@pytest.fixture
def good_item() -> ContentItem:
    """Item valide du scénario d'admission nominal (score global attendu: 96)."""
    return ContentItem(
        id="q-sort",
        question="How do you sort an array?",
        answer="Use a comparison sort such as merge sort for O(n log n) time.",
        channel="algorithms",
        difficulty="intermediate",
    )
