"""Collaborateur de réécriture d'items.

`LLMRewriter` construit un prompt selon le type d'action (`improve` ou `rewrite`), appelle le LLM
sous retry et circuit breaker, puis extrait le premier objet JSON de la réponse. Un échec définitif
ou une réponse inexploitable renvoie `None`; seul un circuit ouvert est signalé par exception.
"""

from __future__ import annotations

import json
import re
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Any

import structlog
from pydantic import ValidationError

from intake.domain.errors import CircuitOpenError
from intake.domain.models import ContentItem, FeedbackKind, RewriteResult
from intake.infra.llm.base import LLM
from intake.infra.monitoring.metrics import COLLABORATOR_CALLS
from intake.infra.ops.resilience import CircuitBreaker, with_retry

_JSON_OBJECT_RE = re.compile(r"\{[\s\S]*\}")

DEFAULT_IMPROVE_NOTE = (
    "User requested improvement - make the explanation clearer and more comprehensive"
)
DEFAULT_REWRITE_NOTE = "User requested complete rewrite - content may be incorrect or outdated"

SYSTEM_PROMPT = (
    "You maintain a bank of technical interview questions. "
    "Reply with a single JSON object and nothing else."
)


class Rewriter(ABC):
    """Interface du collaborateur de réécriture."""

    @abstractmethod
    def rewrite(self, item: ContentItem, kind: FeedbackKind, note: str | None) -> RewriteResult | None:
        """Propose une nouvelle version de l'item, ou None."""
        raise NotImplementedError


def extract_json_object(text: str) -> dict[str, Any] | None:
    """Premier objet JSON (du premier `{` au dernier `}`) contenu dans un texte libre."""
    match = _JSON_OBJECT_RE.search(text or "")
    if not match:
        return None
    try:
        data = json.loads(match.group(0))
    except ValueError:
        return None
    return data if isinstance(data, dict) else None


def build_messages(item: ContentItem, kind: FeedbackKind, note: str | None) -> list[dict[str, str]]:
    """Messages chat pour une amélioration ou une réécriture complète."""
    payload = {
        "question": item.question,
        "answer": item.answer,
        "explanation": item.explanation,
        "diagram": item.diagram,
        "channel": item.channel,
        "sub_channel": item.sub_channel,
        "difficulty": item.difficulty,
        "tags": item.tags or [],
    }
    if kind == "rewrite":
        instruction = (
            "REWRITE this existing question from scratch, keeping the same channel and "
            "difficulty. Return JSON with keys: question, answer, explanation, diagram, tags."
        )
        feedback = note or DEFAULT_REWRITE_NOTE
    else:
        instruction = (
            "IMPROVE this existing question without changing the question text. "
            "Return JSON with keys: answer, explanation, diagram."
        )
        feedback = note or DEFAULT_IMPROVE_NOTE
    user = (
        f"{instruction}\n\nUser feedback: {feedback}\n\n"
        f"Current content:\n{json.dumps(payload, ensure_ascii=False, indent=2)}"
    )
    return [
        {"role": "system", "content": SYSTEM_PROMPT},
        {"role": "user", "content": user},
    ]


class LLMRewriter(Rewriter):
    """Réécriture via LLM, protégée par retry et circuit breaker."""

    def __init__(
        self,
        llm: LLM,
        breaker: CircuitBreaker | None = None,
        max_attempts: int = 3,
        delay_s: float = 10.0,
        backoff: float = 1.5,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.llm = llm
        self.breaker = breaker or CircuitBreaker(name="rewriter")
        self.max_attempts = max_attempts
        self.delay_s = delay_s
        self.backoff = backoff
        self._sleep = sleep
        self._log = structlog.get_logger(__name__).bind(component="llm_rewriter")

    def rewrite(self, item: ContentItem, kind: FeedbackKind, note: str | None) -> RewriteResult | None:
        """Propose une nouvelle version de l'item.

        Raises:
            CircuitOpenError: si le circuit est ouvert.
        """
        messages = build_messages(item, kind, note)

        def _attempt(_attempt: int) -> str:
            return self.breaker.call(lambda: self.llm.generate(messages))

        try:
            text = with_retry(
                _attempt,
                max_attempts=self.max_attempts,
                delay_s=self.delay_s,
                backoff=self.backoff,
                sleep=self._sleep,
            )
        except CircuitOpenError:
            COLLABORATOR_CALLS.labels(outcome="circuit_open").inc()
            raise
        except Exception as exc:
            COLLABORATOR_CALLS.labels(outcome="error").inc()
            self._log.error("rewrite_failed", item_id=item.id, kind=kind, error=str(exc))
            return None

        data = extract_json_object(text)
        if data is None:
            COLLABORATOR_CALLS.labels(outcome="empty").inc()
            self._log.warning("rewrite_unparseable", item_id=item.id, kind=kind)
            return None
        try:
            result = RewriteResult.model_validate(data)
        except ValidationError as exc:
            COLLABORATOR_CALLS.labels(outcome="empty").inc()
            self._log.warning("rewrite_invalid", item_id=item.id, kind=kind, error=str(exc))
            return None
        COLLABORATOR_CALLS.labels(outcome="empty" if result.is_empty() else "success").inc()
        return None if result.is_empty() else result
