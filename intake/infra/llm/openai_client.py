"""
Client LLM basé sur l'API OpenAI.

Implémente l'interface LLM via `chat.completions` (SDK OpenAI). Les erreurs du SDK et les réponses
vides sont converties en `CollaboratorError`; le retry et le circuit breaker sont appliqués par
l'appelant.
"""

from __future__ import annotations

from typing import Any

from openai import OpenAI

from intake.domain.errors import CollaboratorError
from intake.infra.llm.base import LLM


class OpenAILLM(LLM):
    """LLM basé sur OpenAI."""

    def __init__(
        self,
        api_key: str | None = None,
        model: str = "gpt-4o-mini",
        timeout_s: float = 300.0,
        client: Any | None = None,
    ) -> None:
        """Initialise le client OpenAI (clé jamais journalisée)."""
        self.model = model
        self.client = client or OpenAI(api_key=api_key or None, timeout=timeout_s, max_retries=0)

    def generate(self, messages: list[dict[str, str]], **kwargs: Any) -> str:
        """Génère du texte via `chat.completions`."""
        try:
            resp = self.client.chat.completions.create(
                model=self.model,
                messages=messages,
                **kwargs,
            )
            content = resp.choices[0].message.content
        except Exception as exc:
            raise CollaboratorError(f"openai chat completion failed: {exc}") from exc
        if not content:
            raise CollaboratorError("openai returned an empty completion")
        return str(content)
