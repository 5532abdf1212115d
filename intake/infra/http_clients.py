"""Clients HTTP utilitaires.

`UrlChecker` vérifie la joignabilité d'une URL média: `HEAD`, puis `GET` si le serveur répond 405.
Toute erreur réseau ou statut >= 400 rend l'URL injoignable; aucune exception n'est propagée.
"""

from __future__ import annotations

import httpx
import structlog

HTTP_STATUS_METHOD_NOT_ALLOWED = 405
HTTP_STATUS_CLIENT_ERROR_MIN = 400


class UrlChecker:
    """Vérificateur de joignabilité d'URLs avec cache par instance."""

    def __init__(self, timeout_s: float = 5.0, client: httpx.Client | None = None) -> None:
        """Initialise le client HTTP.

        Args:
            timeout_s: Timeout global d'une vérification.
            client: Client httpx injecté (tests).
        """
        if client is None:
            client = httpx.Client(timeout=httpx.Timeout(timeout_s), follow_redirects=True)
        self._client = client
        self._cache: dict[str, bool] = {}
        self._log = structlog.get_logger(__name__).bind(component="url_checker")

    def is_reachable(self, url: str) -> bool:
        """Vrai si l'URL répond avec un statut < 400."""
        if url in self._cache:
            return self._cache[url]
        try:
            resp = self._client.head(url)
            if resp.status_code == HTTP_STATUS_METHOD_NOT_ALLOWED:
                resp = self._client.get(url)
            ok = resp.status_code < HTTP_STATUS_CLIENT_ERROR_MIN
        except httpx.HTTPError as exc:
            self._log.info("url_unreachable", url=url, error=str(exc))
            ok = False
        self._cache[url] = ok
        return ok

    __call__ = is_reachable

    def close(self) -> None:
        """Ferme le client HTTP sous-jacent."""
        self._client.close()
