"""Circuit breaker et retry avec backoff pour les collaborateurs externes.

- `CircuitBreaker`: `closed` -> `open` après N échecs consécutifs; passe en `half_open` une fois le
  délai de réinitialisation écoulé; un succès en `half_open` referme, un échec rouvre.
- `with_retry`: ré-exécute une fonction jusqu'à `max_attempts` fois, le délai étant multiplié par
  `backoff` entre deux tentatives.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from typing import TypeVar

import structlog

from intake.domain.errors import CircuitOpenError

T = TypeVar("T")

CLOSED = "closed"
OPEN = "open"
HALF_OPEN = "half_open"

log = structlog.get_logger(__name__).bind(component="resilience")


class CircuitBreaker:
    """Coupe-circuit sur échecs consécutifs."""

    def __init__(
        self,
        failure_threshold: int = 5,
        reset_timeout_s: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
        name: str = "collaborator",
    ) -> None:
        self.failure_threshold = failure_threshold
        self.reset_timeout_s = reset_timeout_s
        self.name = name
        self._clock = clock
        self._lock = threading.Lock()
        self.consecutive_failures = 0
        self.opened_at: float | None = None
        self._state = CLOSED

    @property
    def state(self) -> str:
        """État courant; un circuit ouvert dont le délai est écoulé est rapporté `half_open`."""
        with self._lock:
            self._maybe_half_open()
            return self._state

    def _maybe_half_open(self) -> None:
        if (
            self._state == OPEN
            and self.opened_at is not None
            and self._clock() - self.opened_at >= self.reset_timeout_s
        ):
            self._state = HALF_OPEN
            log.info("circuit_half_open", breaker=self.name)

    def allow_request(self) -> bool:
        """Vrai si un appel peut être tenté."""
        return self.state != OPEN

    def record_success(self) -> None:
        """Remet à zéro les échecs; referme le circuit s'il était en test."""
        with self._lock:
            self.consecutive_failures = 0
            if self._state == HALF_OPEN:
                log.info("circuit_closed", breaker=self.name)
            self._state = CLOSED
            self.opened_at = None

    def record_failure(self) -> None:
        """Compte un échec; ouvre le circuit au seuil ou si l'appel de test échoue."""
        with self._lock:
            self.consecutive_failures += 1
            if self._state == HALF_OPEN or self.consecutive_failures >= self.failure_threshold:
                if self._state != OPEN:
                    log.warning(
                        "circuit_opened",
                        breaker=self.name,
                        failures=self.consecutive_failures,
                    )
                self._state = OPEN
                self.opened_at = self._clock()

    def reset(self) -> None:
        """Referme le circuit sans condition."""
        with self._lock:
            self.consecutive_failures = 0
            self.opened_at = None
            self._state = CLOSED

    def call(self, fn: Callable[[], T]) -> T:
        """Exécute `fn` sous la protection du circuit.

        Raises:
            CircuitOpenError: si le circuit est ouvert.
        """
        if not self.allow_request():
            raise CircuitOpenError(f"circuit '{self.name}' is open")
        try:
            result = fn()
        except Exception:
            self.record_failure()
            raise
        self.record_success()
        return result


def with_retry(
    fn: Callable[[int], T],
    max_attempts: int = 3,
    delay_s: float = 10.0,
    backoff: float = 1.5,
    sleep: Callable[[float], None] = time.sleep,
    retry_on: tuple[type[BaseException], ...] = (Exception,),
    no_retry_on: tuple[type[BaseException], ...] = (CircuitOpenError,),
) -> T:
    """Exécute `fn(attempt)` avec retries et backoff multiplicatif.

    Args:
        fn: Fonction recevant le numéro de tentative (1-indexé).
        max_attempts: Nombre maximal de tentatives.
        delay_s: Délai avant la deuxième tentative.
        backoff: Multiplicateur appliqué au délai après chaque échec.
        sleep: Fonction de pause injectable (tests).
        retry_on: Exceptions déclenchant une nouvelle tentative.
        no_retry_on: Exceptions propagées immédiatement.

    Returns:
        Le résultat de la première tentative réussie.

    Raises:
        La dernière exception si toutes les tentatives échouent.
    """
    attempts = max(1, max_attempts)
    delay = delay_s
    for attempt in range(1, attempts + 1):
        try:
            return fn(attempt)
        except no_retry_on:
            raise
        except retry_on as exc:
            if attempt >= attempts:
                raise
            log.warning(
                "retry_attempt_failed",
                attempt=attempt,
                max_attempts=attempts,
                delay_s=delay,
                error=str(exc),
            )
            sleep(delay)
            delay *= backoff
    raise AssertionError("unreachable")
