"""Exceptions du pipeline d'intake.

Les adaptateurs (embeddings, stores, tracker, collaborateur) lèvent ces erreurs; les
orchestrateurs les interceptent et les transforment en valeurs de résultat pour qu'aucune unité de
travail n'interrompe le lot.
"""


class IntakeError(RuntimeError):
    """Erreur de base du pipeline."""


class EmbeddingProviderError(IntakeError):
    """Échec du fournisseur d'embeddings primaire (timeout, HTTP, réponse malformée)."""


class ContentStoreError(IntakeError):
    """Erreur de lecture/écriture du store de contenu."""


class TrackerError(IntakeError):
    """Erreur renvoyée par le tracker de rapports."""


class CollaboratorError(IntakeError):
    """Erreur du collaborateur de réécriture."""


class CircuitOpenError(CollaboratorError):
    """Appel refusé car le circuit breaker est ouvert."""


class LedgerError(IntakeError):
    """Erreur d'accès au registre d'idempotence."""
