"""Constantes métier du pipeline d'intake pour éviter les valeurs magiques dans le code.

Ce module regroupe les lexiques et seuils statiques utilisés par la quality gate, le détecteur de
doublons et le processeur de feedback. Les seuils réglables par un opérateur sont exposés dans
`intake.core.settings`; les valeurs ci-dessous en sont les défauts.
"""

# Pondération par défaut du score global (somme = 1.0)
DEFAULT_QUALITY_WEIGHTS: dict[str, float] = {
    "duplicate": 0.25,
    "content": 0.30,
    "difficulty": 0.15,
    "relevance": 0.20,
    "media": 0.10,
}

DEFAULT_TECHNICAL_CHANNELS: tuple[str, ...] = ("algorithms", "frontend", "backend", "database")

# Structure
QUESTION_MIN_LEN = 20
QUESTION_MAX_LEN = 1000
ANSWER_MIN_LEN = 50
ANSWER_MAX_LEN = 5000

# Score global plafonné en présence d'un problème bloquant
BLOCKING_SCORE_CAP = 40
MAX_SCORE = 100

# Doublons
POTENTIAL_DUPLICATE_SIMILARITY = 0.70
PREVIEW_LEN = 80

# Contenu
PLACEHOLDER_PATTERNS: tuple[str, ...] = (
    r"lorem ipsum",
    r"\[insert.*?\]",
    r"\btodo\b",
    r"\bfixme\b",
    r"\bxxx\b",
    r"placeholder",
)
PLACEHOLDER_PENALTY = 50
VAGUE_STARTERS: tuple[str, ...] = (r"^what is ", r"^define ", r"^explain ", r"^describe ")
VAGUE_QUESTION_MAX_LEN = 60
VAGUE_PENALTY = 15
SHORT_ANSWER_LEN = 100
SHORT_ANSWER_PENALTY = 10
CODE_EXPECTED_ANSWER_LEN = 200
MISSING_CODE_PENALTY = 5
CODE_TOKENS_PATTERN = r"```|`[^`]+`|function|const |let |var |class |def |import "
EXPLANATION_EXPECTED_ANSWER_LEN = 300
MISSING_EXPLANATION_PENALTY = 5

# Difficulté
BEGINNER_INDICATORS: tuple[str, ...] = ("what is", "define", "basic", "simple", "introduction")
ADVANCED_INDICATORS: tuple[str, ...] = (
    "optimize",
    "scale",
    "distributed",
    "trade-off",
    "architecture",
    "design pattern",
    "complexity",
)
INDICATOR_MISMATCH_COUNT = 2
DIFFICULTY_MISMATCH_PENALTY = 20
BEGINNER_QUESTION_MAX_LEN = 200
ADVANCED_QUESTION_MIN_LEN = 50
ADVANCED_ANSWER_MIN_LEN = 200
DIFFICULTY_LENGTH_PENALTY = 10

# Pertinence canal
CHANNEL_KEYWORDS: dict[str, tuple[str, ...]] = {
    "system-design": (
        "design", "scale", "architecture", "distributed", "load", "cache", "database", "api",
        "microservice",
    ),
    "algorithms": (
        "array", "string", "tree", "graph", "sort", "search", "dynamic", "recursion",
        "complexity", "optimize",
    ),
    "frontend": (
        "react", "javascript", "css", "html", "component", "state", "dom", "browser", "render",
        "hook",
    ),
    "backend": (
        "api", "server", "database", "authentication", "rest", "graphql", "middleware", "request",
        "response",
    ),
    "devops": (
        "deploy", "pipeline", "ci/cd", "docker", "kubernetes", "terraform", "aws", "cloud",
        "infrastructure",
    ),
    "sre": (
        "incident", "monitoring", "slo", "sli", "availability", "reliability", "alert", "on-call",
        "postmortem",
    ),
    "database": (
        "sql", "query", "index", "transaction", "nosql", "schema", "normalization", "join", "acid",
    ),
    "security": (
        "authentication", "authorization", "encryption", "vulnerability", "oauth", "jwt", "xss",
        "csrf",
    ),
    "behavioral": (
        "team", "project", "challenge", "conflict", "leadership", "decision", "situation",
        "experience",
    ),
    "ai-ml": (
        "model", "training", "neural", "machine learning", "deep learning", "tensor", "prediction",
        "classification",
    ),
}
UNKNOWN_CHANNEL_RELEVANCE = 80
RELEVANCE_STRONG_RATIO = 0.10
RELEVANCE_STRONG_PENALTY = 30
RELEVANCE_MILD_RATIO = 0.20
RELEVANCE_MILD_PENALTY = 15

# Médias
DIAGRAM_MIN_LINES = 4
DIAGRAM_TOO_SIMPLE_PENALTY = 10
DIAGRAM_STARTERS: tuple[str, ...] = (
    "graph",
    "flowchart",
    "sequencediagram",
    "classdiagram",
    "statediagram",
    "erdiagram",
    "gantt",
    "pie",
)
DIAGRAM_SYNTAX_PENALTY = 15
VIDEO_URL_PATTERN = r"(?:youtube\.com/watch\?v=|youtu\.be/|youtube\.com/embed/)([^&\n?#]+)"
VIDEO_URL_PENALTY = 5

# Embeddings
EMBEDDING_TEXT_MAX_LEN = 8000
HASHED_MODEL_NAME = "hashed-tf"

# Tracker / feedback
LABEL_IN_PROGRESS = "bot:in-progress"
LABEL_COMPLETED = "bot:completed"
LABEL_FAILED = "bot:failed"
FEEDBACK_LABEL_PREFIX = "feedback:"
UNRESOLVED_REPORT_PRIORITY = 100
TITLE_KIND_MARKERS: dict[str, str] = {
    "[IMPROVE]": "improve",
    "[REWRITE]": "rewrite",
    "[DISABLE]": "disable",
}
CLAIM_TTL_SECONDS = 3600
