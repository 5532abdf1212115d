"""Embedder hors ligne par fréquence de termes hashée.

Schéma déterministe et sans dépendance réseau, utilisé seul (`EMBEDDINGS_PROVIDER=hashed`) ou comme
repli dès que le fournisseur primaire échoue:

- tokens = suites alphanumériques en minuscules de longueur > 2;
- fréquence de chaque terme divisée par la fréquence maximale;
- trois hashs 32 bits signés (`h = h*31 + c`) de `terme`, `terme_2` et `terme_3`;
- contributions `+f·signe(h1)`, `+0.5·f·signe(h2)`, `+0.25·f` aux indices `|h| mod dim`;
- normalisation L2 (vecteur nul si aucun token).
"""

from __future__ import annotations

import math
import re
from collections import Counter

from intake.core.constants import HASHED_MODEL_NAME
from intake.infra.embeddings.base import Embeddings

_TOKEN_RE = re.compile(r"[a-z0-9]+")
_MIN_TOKEN_LEN = 3
_INT32_MASK = 0xFFFFFFFF
_INT32_SIGN = 0x80000000
SECONDARY_WEIGHT = 0.5
TERTIARY_WEIGHT = 0.25


def tokenize(text: str) -> list[str]:
    """Découpe un texte en tokens alphanumériques minuscules de plus de deux caractères."""
    return [t for t in _TOKEN_RE.findall(text.lower()) if len(t) >= _MIN_TOKEN_LEN]


def string_hash(value: str) -> int:
    """Hash 32 bits signé `h = (h << 5) - h + ord(c)`, avec débordement en complément à deux."""
    h = 0
    for ch in value:
        h = ((h << 5) - h + ord(ch)) & _INT32_MASK
    return h - (1 << 32) if h & _INT32_SIGN else h


def l2_normalize(vector: list[float]) -> list[float]:
    """Normalise un vecteur en norme L2; un vecteur nul est renvoyé tel quel."""
    norm = math.sqrt(sum(v * v for v in vector))
    if norm == 0:
        return vector
    return [v / norm for v in vector]


def hashed_embedding(text: str, dim: int) -> list[float]:
    """Calcule l'embedding hashé d'un texte."""
    vec = [0.0] * dim
    counts = Counter(tokenize(text))
    if not counts:
        return vec
    max_freq = max(counts.values())
    for term, count in counts.items():
        freq = count / max_freq
        h1 = string_hash(term)
        h2 = string_hash(f"{term}_2")
        h3 = string_hash(f"{term}_3")
        vec[abs(h1) % dim] += freq * (1 if h1 > 0 else -1)
        vec[abs(h2) % dim] += freq * (1 if h2 > 0 else -1) * SECONDARY_WEIGHT
        vec[abs(h3) % dim] += freq * TERTIARY_WEIGHT
    return l2_normalize(vec)


class HashedEmbedder(Embeddings):
    """Embedder hors ligne par fréquence de termes hashée."""

    model_name = HASHED_MODEL_NAME

    def __init__(self, dimensions: int = 384) -> None:
        """Initialise l'embedder.

        Args:
            dimensions: Dimension des vecteurs produits.
        """
        if dimensions <= 0:
            raise ValueError("dimensions must be positive")
        self.dimensions = dimensions

    def embed(self, texts: list[str]) -> list[list[float]]:
        """Génère des embeddings déterministes pour une liste de textes."""
        return [hashed_embedding(t, self.dimensions) for t in texts]
