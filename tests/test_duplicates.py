"""
Tests pour la détection de doublons et le regroupement en clusters.

Couvre la classification des similarités, l'indépendance vis-à-vis de l'ordre du lot, la
transitivité des clusters et le scénario de bout en bout à quatre items.
"""

from __future__ import annotations

import itertools

import pytest

from intake.domain.duplicates import (
    DuplicateDetector,
    UnionFind,
    classify_similarity,
    cluster_duplicates,
)
from intake.domain.models import ContentItem, SimilarityRecord
from intake.domain.similarity_index import SimilarityIndex
from intake.services.embedding_provider import EmbeddingProvider
from tests.fakes import SCENARIO_NEAR_SIMILARITY, SCENARIO_TABLE, TableEmbeddings, scenario_items


def _detector(items: list[ContentItem]) -> DuplicateDetector:
    provider = EmbeddingProvider(primary=TableEmbeddings(SCENARIO_TABLE), dimensions=3)
    index = SimilarityIndex(provider)
    index.index(items)
    return DuplicateDetector(index)


def _pairs(records: list[SimilarityRecord]) -> set[frozenset[str]]:
    return {frozenset((r.id1, r.id2)) for r in records}


def _record(a: str, b: str, sim: float = 0.95) -> SimilarityRecord:
    return SimilarityRecord(id1=a, id2=b, similarity=sim, classification="duplicate")


def test_classify_similarity_thresholds() -> None:
    """Teste la classification aux bornes des seuils (bornes incluses)."""
    assert classify_similarity(0.90) == "duplicate"
    assert classify_similarity(0.89) == "near-duplicate"
    assert classify_similarity(0.80) == "near-duplicate"
    assert classify_similarity(0.79) == "unique"
    assert classify_similarity(0.5, duplicate_threshold=0.6, near_threshold=0.4) == "near-duplicate"


def test_detector_rejects_inverted_thresholds() -> None:
    """Teste le refus d'un seuil quasi-doublon supérieur au seuil doublon."""
    index = SimilarityIndex(EmbeddingProvider(dimensions=8))
    with pytest.raises(ValueError):
        DuplicateDetector(index, duplicate_threshold=0.8, near_threshold=0.9)


def test_scenario_duplicate_cluster() -> None:
    """Teste le scénario à quatre items: un cluster de trois, Q4 unique."""
    items = scenario_items()
    detection = _detector(items).detect(items)
    assert _pairs(detection.duplicates) == {frozenset({"q1", "q2"}), frozenset({"q2", "q3"})}
    assert _pairs(detection.near_duplicates) == {frozenset({"q1", "q3"})}
    assert detection.near_duplicates[0].similarity == pytest.approx(SCENARIO_NEAR_SIMILARITY, abs=1e-4)

    clusters = cluster_duplicates([i.id for i in items], detection.duplicates)
    assert len(clusters) == 1
    assert clusters[0].cluster_id == 1
    assert clusters[0].item_ids == ["q1", "q2", "q3"]
    assert clusters[0].recommendation == "merge"
    assert "q4" not in clusters[0].item_ids


def test_detection_is_order_independent() -> None:
    """Teste que l'ensemble des paires ne dépend pas de l'ordre du lot."""
    items = scenario_items()
    detector = _detector(items)
    expected = _pairs(detector.detect(items).duplicates)
    for perm in itertools.permutations(items):
        assert _pairs(detector.detect(list(perm)).duplicates) == expected


def test_each_unordered_pair_reported_once() -> None:
    """Teste qu'une paire n'est jamais rapportée deux fois."""
    items = scenario_items()
    detection = _detector(items).detect(items)
    records = detection.duplicates + detection.near_duplicates
    assert len(records) == len(_pairs(records))


def test_cluster_transitivity_and_order_independence() -> None:
    """Teste la transitivité et l'indépendance vis-à-vis de l'ordre des paires."""
    pairs = [_record("c", "b"), _record("a", "b"), _record("e", "d")]
    ids = ["a", "b", "c", "d", "e", "f"]
    expected = cluster_duplicates(ids, pairs)
    assert [c.item_ids for c in expected] == [["a", "b", "c"], ["d", "e"]]
    assert [c.recommendation for c in expected] == ["merge", "review"]
    assert [c.cluster_id for c in expected] == [1, 2]
    for perm in itertools.permutations(pairs):
        assert cluster_duplicates(list(reversed(ids)), list(perm)) == expected


def test_cluster_without_pairs_is_empty() -> None:
    """Teste qu'aucun cluster n'est produit sans paire doublon."""
    assert cluster_duplicates(["a", "b"], []) == []


def test_union_find_groups() -> None:
    """Teste les opérations Union-Find de base."""
    uf = UnionFind(["a", "b", "c", "d"])
    uf.union("a", "b")
    uf.union("c", "d")
    uf.union("b", "d")
    assert uf.find("a") == uf.find("c")
    assert uf.groups() == [["a", "b", "c", "d"]]
    uf.add("z")
    assert sorted(uf.groups()) == [["a", "b", "c", "d"], ["z"]]


def test_near_identical_pair_through_hashed_embeddings() -> None:
    """Teste deux items au texte quasi identique: une paire doublon, un cluster `review`."""
    answer = (
        "A hash table stores key value pairs inside an array of buckets. The hash function maps "
        "each key to a bucket index, collisions are resolved with chaining or open addressing, "
        "and lookups run in constant average time when the load factor stays bounded."
    )
    first = ContentItem(
        id="h1",
        question="How does a hash table handle collisions?",
        answer=answer,
        channel="algorithms",
    )
    second = first.model_copy(update={"id": "h2", "answer": answer + " Resizing helps."})
    items = [first, second]

    index = SimilarityIndex(EmbeddingProvider())
    assert index.index(items) == 2
    detection = DuplicateDetector(index).detect(items)

    assert _pairs(detection.duplicates) == {frozenset({"h1", "h2"})}
    assert detection.near_duplicates == []
    clusters = cluster_duplicates([i.id for i in items], detection.duplicates)
    assert [(c.item_ids, c.recommendation) for c in clusters] == [(["h1", "h2"], "review")]
