"""Persistent key/value state and policy change events.

The enforcement code only depends on the ``KeyValueStore`` and ``Publisher``
protocols. ``JsonStore`` and ``EventBus`` are the in-process implementations
used by the daemon and the CLI.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import tempfile
from collections import defaultdict
from typing import TYPE_CHECKING, Any, Callable, Protocol

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger("netenforce")

EVENT_CHANNEL = "DiscoveryEvent"
POLICY_CHANGED = "IdentityPolicy:Changed"

Callback = Callable[[str, str, str, Any], None]


class KeyValueStore(Protocol):
    """Persistence used by identities."""

    async def get_json(self, key: str) -> Any: ...  # noqa: ANN401

    async def set_json(self, key: str, value: Any) -> None: ...  # noqa: ANN401

    async def smembers(self, key: str) -> set[str]: ...

    async def sadd(self, key: str, members: list[str]) -> None: ...

    async def srem(self, key: str, members: list[str]) -> None: ...


class Publisher(Protocol):
    """Notification channel used by identities."""

    def publish(self, channel: str, event_type: str, item_id: str, payload: Any) -> int: ...  # noqa: ANN401, E501

    def subscribe_once(
        self,
        channel: str,
        event_type: str,
        item_id: str | None,
        callback: Callback,
    ) -> bool: ...


class JsonStore:
    """Key/value store kept in memory and optionally saved to a JSON file."""

    def __init__(self, path: Path | None = None) -> None:
        self.path = path
        self._values: dict[str, Any] = {}
        self._sets: dict[str, set[str]] = defaultdict(set)
        self._lock = asyncio.Lock()
        if path and path.exists():
            self._load()

    def _load(self) -> None:
        assert self.path is not None
        try:
            with self.path.open(encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError):
            logger.exception("Failed to load state from %s. Starting empty.", self.path)
            return
        self._values = data.get("values", {})
        for key, members in data.get("sets", {}).items():
            self._sets[key] = set(members)

    def _snapshot(self) -> str:
        return json.dumps(
            {
                "values": self._values,
                "sets": {k: sorted(v) for k, v in self._sets.items() if v},
            },
        )

    def _save(self, content: str) -> None:
        assert self.path is not None
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with tempfile.NamedTemporaryFile(
            "w",
            encoding="utf-8",
            dir=self.path.parent,
            prefix=f".{self.path.name}.",
            delete=False,
        ) as f:
            f.write(content)
        try:
            os.replace(f.name, self.path)
        except OSError:
            os.unlink(f.name)
            raise

    async def _persist(self) -> None:
        if self.path is None:
            return
        async with self._lock:
            # Serialized on the loop so the worker thread never sees a changing dict.
            content = self._snapshot()
            try:
                await asyncio.to_thread(self._save, content)
            except OSError:
                logger.exception("Failed to save state to %s", self.path)

    async def get_json(self, key: str) -> Any:  # noqa: ANN401
        return self._values.get(key)

    async def set_json(self, key: str, value: Any) -> None:  # noqa: ANN401
        self._values[key] = value
        await self._persist()

    async def delete(self, key: str) -> None:
        self._values.pop(key, None)
        self._sets.pop(key, None)
        await self._persist()

    async def smembers(self, key: str) -> set[str]:
        return set(self._sets.get(key, set()))

    async def sadd(self, key: str, members: list[str]) -> None:
        self._sets[key].update(members)
        await self._persist()

    async def srem(self, key: str, members: list[str]) -> None:
        self._sets[key].difference_update(members)
        await self._persist()


class EventBus:
    """In-process publish/subscribe keyed by channel, event type and item."""

    def __init__(self) -> None:
        self._subscribers: dict[tuple[str, str, str | None], Callback] = {}

    def subscribe_once(
        self,
        channel: str,
        event_type: str,
        item_id: str | None,
        callback: Callback,
    ) -> bool:
        """Register a callback unless one exists for this key already.

        An item_id of None receives the events of every item.
        """
        key = (channel, event_type, item_id)
        if key in self._subscribers:
            return False
        self._subscribers[key] = callback
        return True

    def publish(
        self,
        channel: str,
        event_type: str,
        item_id: str,
        payload: Any,  # noqa: ANN401
    ) -> int:
        """Deliver an event, return the number of callbacks invoked."""
        delivered = 0
        for key in ((channel, event_type, item_id), (channel, event_type, None)):
            if callback := self._subscribers.get(key):
                try:
                    callback(channel, event_type, item_id, payload)
                except Exception:
                    logger.exception("Subscriber of %s/%s failed", event_type, item_id)
                delivered += 1
        return delivered
