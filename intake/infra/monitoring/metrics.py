"""
Métriques Prometheus du pipeline d'intake.

Ce module définit les compteurs et histogrammes exposés par les composants (embeddings, store
vectoriel, doublons, quality gate, feedback). Les labels restent à cardinalité bornée: jamais
d'identifiant d'item ou de rapport.
"""

from prometheus_client import Counter, Histogram

# Embeddings
EMBEDDING_REQUESTS = Counter(
    "intake_embedding_requests_total",
    "Total embedding computations",
    ["provider"],
)
EMBEDDING_FALLBACKS = Counter(
    "intake_embedding_fallbacks_total",
    "Primary embedding failures that fell back to the hashed scheme",
    ["provider", "reason"],
)
EMBEDDING_CACHE = Counter(
    "intake_embedding_cache_total",
    "Embedding cache lookups",
    ["result"],  # hit | miss
)

# Vector store
VECSTORE_OP_LATENCY = Histogram(
    "intake_vecstore_op_seconds",
    "Latency of vector store operations",
    ["op", "backend"],
)
SIMILARITY_INDEX_FAILURES = Counter(
    "intake_similarity_index_failures_total",
    "Chunks or items skipped by the similarity index",
    ["op"],  # index | lookup
)

# Doublons
DUPLICATE_PAIRS = Counter(
    "intake_duplicate_pairs_total",
    "Similarity pairs detected",
    ["classification"],
)

# Quality gate
GATE_DECISIONS = Counter(
    "intake_quality_gate_decisions_total",
    "Quality gate decisions",
    ["decision"],
)
GATE_SCORE = Histogram(
    "intake_quality_gate_overall_score",
    "Overall quality score distribution",
    buckets=[x * 10.0 for x in range(0, 11)],  # 0..100 step 10
)

# Feedback
FEEDBACK_REPORTS = Counter(
    "intake_feedback_reports_total",
    "Feedback reports processed",
    ["kind", "outcome"],  # outcome: success | failure
)
FEEDBACK_SKIPPED = Counter(
    "intake_feedback_skipped_total",
    "Feedback reports skipped before processing",
    ["reason"],  # in_progress | completed | cooldown | claimed | duplicate
)
LEDGER_ERRORS = Counter(
    "intake_ledger_errors_total",
    "Idempotency ledger read/write errors",
    ["op"],
)
COLLABORATOR_CALLS = Counter(
    "intake_collaborator_calls_total",
    "Rewriting collaborator calls",
    ["outcome"],  # success | empty | error | circuit_open
)
