from __future__ import annotations

import asyncio
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Dict, Iterable, List

from crypto_signals.errors import RepositoryError, ResourceNotFoundError
from crypto_signals.strategy.pair import TradingPair

from .base import PairRepository

logger = logging.getLogger(__name__)


class FilePairRepository(PairRepository):
    """Pairs persisted as one JSON document.

    Every mutation rewrites the whole file through a temporary sibling and
    ``os.replace`` so readers never observe a half-written file. The lock
    serialises read-modify-write cycles inside one process and file access
    runs in a worker thread off the event loop.
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._lock = asyncio.Lock()

    @property
    def path(self) -> Path:
        return self._path

    async def save(self, pair: TradingPair) -> None:
        async with self._lock:
            pairs = await asyncio.to_thread(self._read)
            pairs[pair.id] = pair
            await asyncio.to_thread(self._write, pairs)

    async def update(self, pair: TradingPair) -> None:
        async with self._lock:
            pairs = await asyncio.to_thread(self._read)
            if pair.id not in pairs:
                raise ResourceNotFoundError(f"Pair {pair.id} not found")
            pairs[pair.id] = pair
            await asyncio.to_thread(self._write, pairs)

    async def delete(self, pair_id: str) -> None:
        async with self._lock:
            pairs = await asyncio.to_thread(self._read)
            if pairs.pop(pair_id, None) is None:
                raise ResourceNotFoundError(f"Pair {pair_id} not found")
            await asyncio.to_thread(self._write, pairs)

    async def find_by_id(self, pair_id: str) -> TradingPair | None:
        async with self._lock:
            pairs = await asyncio.to_thread(self._read)
        return pairs.get(pair_id)

    async def find_all(self) -> List[TradingPair]:
        async with self._lock:
            pairs = await asyncio.to_thread(self._read)
        return list(pairs.values())

    async def save_all(self, pairs: Iterable[TradingPair]) -> None:
        async with self._lock:
            await asyncio.to_thread(self._write, {pair.id: pair for pair in pairs})

    def _read(self) -> Dict[str, TradingPair]:
        if not self._path.exists():
            return {}
        try:
            payload = json.loads(self._path.read_text(encoding="utf-8") or "{}")
            items = payload.get("pairs", [])
            return {item["id"]: TradingPair.from_dict(item) for item in items}
        except (OSError, ValueError, KeyError, TypeError) as exc:
            raise RepositoryError(f"Cannot read pairs from {self._path}: {exc}") from exc

    def _write(self, pairs: Dict[str, TradingPair]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        document = {"version": 1, "pairs": [pair.to_dict() for pair in pairs.values()]}
        fd, tmp_name = tempfile.mkstemp(dir=self._path.parent, prefix=f".{self._path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(document, fh, indent=2, ensure_ascii=False)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_name, self._path)
        except OSError as exc:
            Path(tmp_name).unlink(missing_ok=True)
            raise RepositoryError(f"Cannot write pairs to {self._path}: {exc}") from exc
        logger.debug("Saved %d pairs to %s", len(pairs), self._path)
