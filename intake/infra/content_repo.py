"""Dépôts du store de contenu (mémoire, fichier JSON, Redis).

Contrat commun: `get_item`, `save_item`, `set_status`, `get_channel_counts`, `list_items`. Les items
ne sont jamais supprimés; `set_status(id, "disabled")` les retire du décompte par canal.
"""

from __future__ import annotations

import json
import os
import threading
from abc import ABC, abstractmethod
from collections import Counter
from datetime import UTC, datetime
from typing import Any

import redis

from intake.domain.errors import ContentStoreError
from intake.domain.models import ContentItem, ItemStatus


class ContentRepository(ABC):
    """Interface du store de contenu."""

    @abstractmethod
    def get_item(self, item_id: str) -> ContentItem | None:
        """Retourne un item par id, ou None s'il est absent."""

    @abstractmethod
    def save_item(self, item: ContentItem) -> ContentItem:
        """Enregistre/écrase un item et le renvoie."""

    @abstractmethod
    def list_items(self) -> list[ContentItem]:
        """Retourne tous les items."""

    def set_status(self, item_id: str, status: ItemStatus) -> ContentItem:
        """Change le statut d'un item et horodate la modification.

        Raises:
            ContentStoreError: si l'item n'existe pas.
        """
        item = self.get_item(item_id)
        if item is None:
            raise ContentStoreError(f"item {item_id} not found")
        updated = item.model_copy(update={"status": status, "last_updated": datetime.now(UTC)})
        return self.save_item(updated)

    def get_channel_counts(self) -> dict[str, int]:
        """Nombre d'items actifs par canal."""
        return dict(Counter(i.channel for i in self.list_items() if i.status == "active"))

    def channel_of(self, item_id: str) -> str | None:
        """Canal d'un item, ou None s'il est inconnu."""
        item = self.get_item(item_id)
        return item.channel if item else None


class InMemoryContentRepo(ContentRepository):
    """
    Dépôt de contenu en mémoire (utilisé pour dev/tests).

    Stocke les items dans un dict local, non persistant.
    """

    def __init__(self, items: list[ContentItem] | None = None) -> None:
        """Initialise la base mémoire, éventuellement pré-remplie."""
        self._db: dict[str, ContentItem] = {i.id: i for i in items or []}

    def get_item(self, item_id: str) -> ContentItem | None:
        return self._db.get(item_id)

    def save_item(self, item: ContentItem) -> ContentItem:
        self._db[item.id] = item
        return item

    def list_items(self) -> list[ContentItem]:
        return list(self._db.values())


class JSONContentRepository(ContentRepository):
    """Dépôt de contenu basé sur un fichier JSON (`{id: item}`).

    Les écritures passent par un fichier temporaire renommé atomiquement.
    """

    def __init__(self, path: str) -> None:
        """Initialise le dépôt et garantit l'existence du fichier.

        Paramètres:
        - path: chemin du fichier JSON contenant les items.
        """
        self.path = path
        self._lock = threading.Lock()
        directory = os.path.dirname(os.path.abspath(self.path))
        os.makedirs(directory, exist_ok=True)
        if not os.path.exists(self.path):
            self._write({})

    def _read(self) -> dict[str, Any]:
        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as exc:
            raise ContentStoreError(f"cannot read {self.path}: {exc}") from exc
        if not isinstance(data, dict):
            raise ContentStoreError(f"{self.path} must contain a JSON object")
        return data

    def _write(self, data: dict[str, Any]) -> None:
        tmp = self.path + ".tmp"
        try:
            with open(tmp, "w", encoding="utf-8") as f:
                json.dump(data, f, ensure_ascii=False, indent=2)
            os.replace(tmp, self.path)
        except OSError as exc:
            raise ContentStoreError(f"cannot write {self.path}: {exc}") from exc

    def get_item(self, item_id: str) -> ContentItem | None:
        raw = self._read().get(item_id)
        return ContentItem.model_validate(raw) if raw else None

    def save_item(self, item: ContentItem) -> ContentItem:
        with self._lock:
            data = self._read()
            data[item.id] = item.model_dump(mode="json")
            self._write(data)
        return item

    def list_items(self) -> list[ContentItem]:
        return [ContentItem.model_validate(v) for v in self._read().values()]


class RedisContentRepo(ContentRepository):
    """Dépôt de contenu adossé à Redis (clé: `content:item:{id}`, index: `content:ids`)."""

    ids_key = "content:ids"

    def __init__(self, url: str | None = None, client: Any | None = None) -> None:
        """Crée un client Redis à partir de l'URL fournie (ou utilise `client`)."""
        if client is None:
            if not url:
                raise ContentStoreError("REDIS_URL is required for the redis content backend")
            client = redis.Redis.from_url(url, decode_responses=True)
        self.client = client

    @staticmethod
    def _key(item_id: str) -> str:
        return f"content:item:{item_id}"

    def get_item(self, item_id: str) -> ContentItem | None:
        try:
            raw = self.client.get(self._key(item_id))
        except redis.RedisError as exc:
            raise ContentStoreError(str(exc)) from exc
        return ContentItem.model_validate_json(raw) if raw else None

    def save_item(self, item: ContentItem) -> ContentItem:
        try:
            self.client.set(self._key(item.id), item.model_dump_json())
            self.client.sadd(self.ids_key, item.id)
        except redis.RedisError as exc:
            raise ContentStoreError(str(exc)) from exc
        return item

    def list_items(self) -> list[ContentItem]:
        try:
            ids = sorted(self.client.smembers(self.ids_key) or [])
            if not ids:
                return []
            raws = self.client.mget([self._key(i) for i in ids])
        except redis.RedisError as exc:
            raise ContentStoreError(str(exc)) from exc
        return [ContentItem.model_validate_json(r) for r in raws if r]
