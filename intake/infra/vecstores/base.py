"""Interface de base pour les magasins vectoriels.

Ce module définit l'interface abstraite des magasins vectoriels utilisés par l'index de similarité:
ajout de vecteurs normalisés identifiés, recherche par produit scalaire et suppression.
"""

from __future__ import annotations

from abc import ABC, abstractmethod


class VectorStore(ABC):
    """Interface abstraite pour les magasins vectoriels."""

    backend: str = "abstract"

    @abstractmethod
    def add(self, ids: list[str], vectors: list[list[float]]) -> int:
        """Ajoute (ou remplace) des vecteurs et retourne le nombre indexé."""
        raise NotImplementedError

    @abstractmethod
    def search(self, vector: list[float], k: int) -> list[tuple[str, float]]:
        """Retourne au plus `k` couples `(id, score)` triés par score décroissant."""
        raise NotImplementedError

    @abstractmethod
    def remove(self, ids: list[str]) -> int:
        """Supprime des vecteurs et retourne le nombre effectivement retiré."""
        raise NotImplementedError

    @abstractmethod
    def count(self) -> int:
        """Nombre de vecteurs stockés."""
        raise NotImplementedError

    def __contains__(self, item_id: object) -> bool:
        return False
