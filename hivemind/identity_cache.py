from __future__ import annotations

"""
Long-lived cache of validated identities, keyed by description hash.

Stored as one JSON document:

    {"<key>": {"validated_at": "<iso8601>", "identity": {...GoldIdentity...}}}

Entries older than the freshness window read as a miss. Generic identities
are never stored.
"""

import asyncio
import json
import os
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Protocol

from loguru import logger
from pydantic import ValidationError

from .config import CACHE_TTL_DAYS, IDENTITY_CACHE_PATH
from .normalize import description_cache_key
from .pipeline_types import GoldIdentity


class IdentityCache(Protocol):
    async def get(self, key: str) -> Optional[GoldIdentity]: ...

    async def put(self, key: str, identity: GoldIdentity) -> bool: ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JsonIdentityCache:
    """
    asyncio-safe identity cache with optional JSON persistence.

    ``path=None`` keeps everything in memory. Writes are serialised with an
    ``asyncio.Lock`` and persisted through a temp file + ``os.replace`` so a
    reader never sees a half-written document. Last writer wins per key.
    """

    def __init__(
        self,
        path: Optional[Path] = IDENTITY_CACHE_PATH,
        ttl_days: int = CACHE_TTL_DAYS,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._path = Path(path) if path is not None else None
        self._ttl = timedelta(days=ttl_days)
        self._clock = clock
        self._entries: Optional[Dict[str, Dict[str, Any]]] = None
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # persistence
    # ------------------------------------------------------------------

    def _read_file(self) -> Dict[str, Dict[str, Any]]:
        if self._path is None or not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Identity cache unreadable at {}: {}", self._path, e)
            return {}
        return data if isinstance(data, dict) else {}

    def _write_file(self, snapshot: Dict[str, Dict[str, Any]]) -> None:
        if self._path is None:
            return
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_suffix(self._path.suffix + f".{os.getpid()}.tmp")
        tmp.write_text(json.dumps(snapshot, ensure_ascii=False, indent=2), encoding="utf-8")
        os.replace(tmp, self._path)

    async def _ensure_loaded(self) -> Dict[str, Dict[str, Any]]:
        if self._entries is None:
            async with self._lock:
                if self._entries is None:
                    self._entries = await asyncio.to_thread(self._read_file)
        return self._entries

    # ------------------------------------------------------------------
    # public API
    # ------------------------------------------------------------------

    async def get(self, key: str) -> Optional[GoldIdentity]:
        entries = await self._ensure_loaded()
        entry = entries.get(key)
        if not entry:
            logger.debug("Identity cache MISS {}", key)
            return None
        try:
            validated_at = datetime.fromisoformat(entry["validated_at"])
            identity = GoldIdentity.model_validate(entry["identity"])
        except (KeyError, TypeError, ValueError, ValidationError) as e:
            logger.warning("Identity cache entry {} is corrupt: {}", key, e)
            return None
        if validated_at.tzinfo is None:
            validated_at = validated_at.replace(tzinfo=timezone.utc)
        if self._clock() - validated_at > self._ttl:
            logger.debug("Identity cache STALE {} ({})", key, validated_at.isoformat())
            return None
        logger.info("Identity cache HIT {} -> {}", key, identity.name)
        return identity

    async def put(self, key: str, identity: GoldIdentity) -> bool:
        if identity.is_generic:
            logger.debug("Not caching generic identity {!r}", identity.name)
            return False
        await self._ensure_loaded()
        async with self._lock:
            assert self._entries is not None
            self._entries[key] = {
                "validated_at": self._clock().isoformat(),
                "identity": identity.model_dump(mode="json"),
            }
            snapshot = dict(self._entries)
            await asyncio.to_thread(self._write_file, snapshot)
        logger.info("Identity cache stored {} -> {}", key, identity.name)
        return True

    async def get_for_description(self, description: str) -> Optional[GoldIdentity]:
        return await self.get(description_cache_key(description))

    async def put_for_description(self, description: str, identity: GoldIdentity) -> bool:
        return await self.put(description_cache_key(description), identity)

    def __len__(self) -> int:
        return len(self._entries or {})
