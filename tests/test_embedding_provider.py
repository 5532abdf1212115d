"""
Tests pour le fournisseur d'embeddings.

Couvre le repli hors ligne, le cache par modèle, le redimensionnement des vecteurs primaires et le
traitement par lots.
"""

from __future__ import annotations

import math

import pytest

from intake.infra.embeddings.hashed_embedder import hashed_embedding
from intake.services.embedding_provider import EmbeddingProvider, resize_vector, text_fingerprint
from tests.fakes import FailingEmbeddings, TableEmbeddings

FINGERPRINT_LEN = 32


def test_offline_provider_uses_hashed_scheme() -> None:
    """Teste que sans primaire le vecteur est celui du schéma hashé."""
    provider = EmbeddingProvider(primary=None, dimensions=64)
    text = "What is a closure in JavaScript?"
    assert provider.embed(text) == hashed_embedding(text, 64)
    assert provider.model_name == "hashed-tf"


def test_primary_failure_falls_back_without_raising() -> None:
    """Teste le repli sur le schéma hashé quand le primaire échoue."""
    primary = FailingEmbeddings()
    provider = EmbeddingProvider(primary=primary, dimensions=32)
    text = "Explain eventual consistency"
    assert provider.embed(text) == hashed_embedding(text, 32)
    assert provider.cache_stats()["fallbacks"] == 1


def test_primary_is_retried_after_a_failure() -> None:
    """Teste qu'un échec du primaire n'est pas mis en cache sous la clé du primaire."""
    primary = FailingEmbeddings()
    provider = EmbeddingProvider(primary=primary, dimensions=32)
    provider.embed("same text")
    provider.embed("same text")
    assert primary.calls == 2


def test_primary_vector_is_normalized_and_cached() -> None:
    """Teste la normalisation L2 et le cache des vecteurs primaires."""
    primary = TableEmbeddings({"alpha": [3.0, 4.0]})
    provider = EmbeddingProvider(primary=primary, dimensions=2)
    assert provider.embed("alpha text") == pytest.approx([0.6, 0.8])
    provider.embed("alpha text")
    assert primary.calls == 1
    stats = provider.cache_stats()
    assert stats["hits"] == 1
    assert stats["model"] == "table"


def test_malformed_primary_output_falls_back() -> None:
    """Teste qu'un vecteur non fini déclenche le repli."""
    primary = TableEmbeddings({"alpha": [float("nan"), 1.0]})
    provider = EmbeddingProvider(primary=primary, dimensions=8)
    assert provider.embed("alpha") == hashed_embedding("alpha", 8)


def test_resize_vector_samples_by_index_ratio() -> None:
    """Teste le ré-échantillonnage d'un vecteur primaire vers la dimension cible."""
    out = resize_vector([1.0, 2.0, 3.0, 4.0], 2)
    norm = math.sqrt(10)
    assert out == pytest.approx([1 / norm, 3 / norm])
    assert len(resize_vector([1.0, 1.0], 4)) == 4


def test_embed_batch_preserves_order_and_pauses_between_chunks() -> None:
    """Teste l'ordre des résultats et la pause entre paquets."""
    table = {k: [float(i + 1), 1.0] for i, k in enumerate(["a1", "a2", "a3", "a4", "a5"])}
    pauses: list[float] = []
    provider = EmbeddingProvider(
        primary=TableEmbeddings(table),
        dimensions=2,
        batch_size=2,
        batch_delay_s=0.01,
        sleep=pauses.append,
    )
    texts = ["a1", "a2", "a3", "a4", "a5"]
    out = provider.embed_batch(texts)
    assert out == [provider.embed(t) for t in texts]
    assert pauses == [0.01, 0.01]
    assert provider.embed_batch([]) == []


def test_clear_cache_resets_stats() -> None:
    """Teste la remise à zéro du cache."""
    provider = EmbeddingProvider(dimensions=16)
    provider.embed("some words here")
    provider.clear_cache()
    assert provider.cache_stats()["size"] == 0
    assert provider.cache_stats()["misses"] == 0


def test_text_fingerprint_is_stable() -> None:
    """Teste la stabilité de l'empreinte utilisée comme clé de cache."""
    assert text_fingerprint("abc") == text_fingerprint("abc")
    assert text_fingerprint("abc") != text_fingerprint("abd")
    assert len(text_fingerprint("abc")) == FINGERPRINT_LEN
