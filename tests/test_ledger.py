"""
Tests pour le registre d'idempotence du processeur de feedback.

Ce module teste le store en mémoire (expiration, `nx`), le cycle de vie d'une entrée, la fenêtre de
cool-down et la revendication conditionnelle.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from unittest.mock import Mock

import pytest
import redis

from intake.domain.errors import LedgerError
from intake.infra.ops.ledger import FeedbackLedger, _InMemoryKV

COOLDOWN = timedelta(hours=24)
TTL_7_DAYS = 7 * 24 * 3600


class _Clock:
    def __init__(self) -> None:
        self.now = datetime(2024, 5, 1, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now


def test_in_memory_kv_nx_and_expiration() -> None:
    """Teste `set` avec `nx` et l'expiration des clés."""
    t = [1000.0]
    kv = _InMemoryKV(clock=lambda: t[0])
    assert kv.set("k", "v1", ex=10, nx=True) is True
    assert kv.set("k", "v2", ex=10, nx=True) is None
    assert kv.get("k") == "v1"
    t[0] += 11
    assert kv.get("k") is None
    assert kv.set("k", "v3", nx=True) is True
    assert kv.delete("k", "missing") == 1


def test_record_lifecycle_and_cooldown() -> None:
    """Teste le passage processing -> completed et la fenêtre de cool-down."""
    clock = _Clock()
    ledger = FeedbackLedger(now=clock)
    started = ledger.record_start("r1", "q1", "improve")
    assert started.status == "processing"
    assert not ledger.was_recently_completed("r1", COOLDOWN)

    done = ledger.record_complete("r1", True, result={"item_id": "q1"})
    assert done.status == "completed"
    assert done.item_id == "q1"
    assert ledger.was_recently_completed("r1", COOLDOWN)

    clock.now += timedelta(hours=25)
    assert not ledger.was_recently_completed("r1", COOLDOWN)


def test_failed_report_is_not_in_cooldown() -> None:
    """Teste qu'un rapport en échec peut être retraité."""
    ledger = FeedbackLedger()
    ledger.record_start("r2", "q2", "rewrite")
    entry = ledger.record_complete("r2", False, error="Question not found in content store")
    assert entry.status == "failed"
    assert entry.error == "Question not found in content store"
    assert not ledger.was_recently_completed("r2", COOLDOWN)


def test_claim_is_exclusive_until_released() -> None:
    """Teste la revendication conditionnelle."""
    ledger = FeedbackLedger()
    assert ledger.claim("r3")
    assert not ledger.claim("r3")
    ledger.release("r3")
    assert ledger.claim("r3")


def test_entries_are_written_with_retention_ttl() -> None:
    """Teste que les entrées sont écrites avec le TTL de rétention."""
    client = Mock()
    ledger = FeedbackLedger(retention_days=7, client=client)
    ledger.record_start("r4", "q4", "disable")
    args, kwargs = client.set.call_args
    assert args[0] == "feedback:ledger:r4"
    assert kwargs["ex"] == TTL_7_DAYS


def test_redis_errors_become_ledger_errors() -> None:
    """Teste la conversion des erreurs Redis."""
    client = Mock()
    client.get.side_effect = redis.ConnectionError("down")
    client.set.side_effect = redis.ConnectionError("down")
    ledger = FeedbackLedger(client=client)
    with pytest.raises(LedgerError):
        ledger.get("r5")
    with pytest.raises(LedgerError):
        ledger.claim("r5")


def test_from_url_without_url_uses_memory() -> None:
    """Teste la construction sans Redis."""
    ledger = FeedbackLedger.from_url(None, retention_days=3)
    assert isinstance(ledger.client, _InMemoryKV)
    assert ledger.retention_days == 3
