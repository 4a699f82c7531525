from __future__ import annotations
import hashlib
import time
from collections import OrderedDict
from typing import Iterable


def now_ms() -> int:
    return int(time.time() * 1000)


def clamp(value: float, min_value: float, max_value: float) -> float:
    return min(max(value, min_value), max_value)


def dedupe_key(parts: Iterable[object]) -> str:
    raw = ":".join("" if p is None else str(p) for p in parts)
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


class RollingDedupe:
    """Conjunto acotado: al superar ``max_size`` se descartan las claves más antiguas."""

    def __init__(self, max_size: int = 6000) -> None:
        self.max_size = max_size
        self._keys: "OrderedDict[str, None]" = OrderedDict()

    def has(self, key: str) -> bool:
        return key in self._keys

    def add(self, key: str) -> None:
        self._keys[key] = None
        self._keys.move_to_end(key)
        while len(self._keys) > self.max_size:
            self._keys.popitem(last=False)

    def __len__(self) -> int:
        return len(self._keys)
