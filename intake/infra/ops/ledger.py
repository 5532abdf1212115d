"""Registre d'idempotence du processeur de feedback (Redis ou mémoire).

- `FeedbackLedger.record_start / record_complete`: historique par rapport
  (`processing` -> `completed` | `failed`), conservé `LEDGER_RETENTION_DAYS`.
- `FeedbackLedger.was_recently_completed`: vrai si le rapport a été traité avec succès dans la
  fenêtre de cool-down; un tel rapport n'est jamais repris.
- `FeedbackLedger.claim`: revendication conditionnelle (`SET NX` avec TTL) qui protège contre deux
  instances traitant le même rapport.

Clés:
    feedback:ledger:{report_id}
    feedback:claim:{report_id}

Sans `REDIS_URL`, un store en mémoire équivalent est utilisé (tests, dev).
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

import redis

from intake.core.constants import CLAIM_TTL_SECONDS
from intake.domain.errors import LedgerError
from intake.domain.models import FeedbackKind, LedgerEntry


class _InMemoryKV:
    """Sous-ensemble de l'API Redis (`set` avec `nx`/`ex`, `get`, `delete`) avec expiration."""

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._exp: dict[str, float] = {}
        self._vals: dict[str, str] = {}

    def _purge(self, key: str) -> None:
        exp = self._exp.get(key)
        if exp is not None and exp <= self._clock():
            self._exp.pop(key, None)
            self._vals.pop(key, None)

    def set(self, name: str, value: str, ex: int | None = None, nx: bool = False) -> bool | None:
        self._purge(name)
        if nx and name in self._vals:
            return None
        self._vals[name] = value
        if ex:
            self._exp[name] = self._clock() + int(ex)
        else:
            self._exp.pop(name, None)
        return True

    def get(self, name: str) -> str | None:
        self._purge(name)
        return self._vals.get(name)

    def delete(self, *names: str) -> int:
        removed = 0
        for name in names:
            self._exp.pop(name, None)
            if self._vals.pop(name, None) is not None:
                removed += 1
        return removed


def _redis_client(url: str | None) -> Any | None:
    if not url:
        return None
    return redis.Redis.from_url(url, decode_responses=True)


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass
class FeedbackLedger:
    """Registre des rapports traités avec TTL."""

    retention_days: int = 7
    client: Any | None = field(default=None)
    now: Callable[[], datetime] = field(default=_utcnow)

    def __post_init__(self) -> None:
        """Initialise le store en mémoire si aucun client n'est fourni."""
        if self.client is None:
            self.client = _InMemoryKV()

    @classmethod
    def from_url(cls, url: str | None, retention_days: int = 7) -> FeedbackLedger:
        """Construit un registre Redis si `url` est fourni, en mémoire sinon."""
        return cls(retention_days=retention_days, client=_redis_client(url))

    @staticmethod
    def _entry_key(report_id: str) -> str:
        return f"feedback:ledger:{report_id}"

    @staticmethod
    def _claim_key(report_id: str) -> str:
        return f"feedback:claim:{report_id}"

    @property
    def _ttl(self) -> int:
        return int(timedelta(days=self.retention_days).total_seconds())

    def get(self, report_id: str) -> LedgerEntry | None:
        """Entrée du registre pour un rapport."""
        try:
            raw = self.client.get(self._entry_key(report_id))  # type: ignore[union-attr]
        except redis.RedisError as exc:
            raise LedgerError(f"ledger read failed: {exc}") from exc
        return LedgerEntry.model_validate_json(raw) if raw else None

    def _put(self, entry: LedgerEntry) -> None:
        try:
            self.client.set(  # type: ignore[union-attr]
                self._entry_key(entry.report_id), entry.model_dump_json(), ex=self._ttl
            )
        except redis.RedisError as exc:
            raise LedgerError(f"ledger write failed: {exc}") from exc

    def was_recently_completed(self, report_id: str, cooldown: timedelta) -> bool:
        """Vrai si le rapport est `completed` depuis moins de `cooldown`."""
        entry = self.get(report_id)
        if entry is None or entry.status != "completed" or entry.completed_at is None:
            return False
        return entry.completed_at > self.now() - cooldown

    def record_start(self, report_id: str, item_id: str, kind: FeedbackKind) -> LedgerEntry:
        """Enregistre le début du traitement (écrase une entrée précédente)."""
        entry = LedgerEntry(
            report_id=report_id,
            item_id=item_id,
            kind=kind,
            status="processing",
            processed_at=self.now(),
        )
        self._put(entry)
        return entry

    def record_complete(
        self,
        report_id: str,
        success: bool,
        result: dict[str, Any] | None = None,
        error: str | None = None,
    ) -> LedgerEntry:
        """Clôt l'entrée en `completed` ou `failed`."""
        now = self.now()
        entry = self.get(report_id) or LedgerEntry(report_id=report_id, processed_at=now)
        entry = entry.model_copy(
            update={
                "status": "completed" if success else "failed",
                "completed_at": now,
                "result": result,
                "error": error,
            }
        )
        self._put(entry)
        return entry

    def claim(self, report_id: str, ttl: int = CLAIM_TTL_SECONDS) -> bool:
        """Revendique un rapport (`SET NX`); False si une autre instance le détient."""
        try:
            ok = self.client.set(  # type: ignore[union-attr]
                self._claim_key(report_id), "1", nx=True, ex=ttl
            )
        except redis.RedisError as exc:
            raise LedgerError(f"ledger claim failed: {exc}") from exc
        return bool(ok)

    def release(self, report_id: str) -> None:
        """Libère la revendication d'un rapport."""
        try:
            self.client.delete(self._claim_key(report_id))  # type: ignore[union-attr]
        except redis.RedisError as exc:
            raise LedgerError(f"ledger release failed: {exc}") from exc
