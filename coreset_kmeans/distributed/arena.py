"""
Арена разделяемых буферов.

Все окна выделяются один раз в основном процессе до старта воркеров:
для многопроцессного режима — ``RawArray`` (как shared X в пуле), для
локального — обычные массивы NumPy. Барьер группы тоже живёт здесь.
"""

from __future__ import annotations

from dataclasses import dataclass
from multiprocessing.context import BaseContext
from typing import Any, Dict, Tuple

import numpy as np

# dtype → typecode RawArray
_TYPECODES: Dict[str, str] = {
    "float64": "d",
    "int64": "q",
}


@dataclass(frozen=True)
class BufferSpec:
    """Описание именованного буфера."""

    name: str
    shape: Tuple[int, ...]
    dtype: str = "float64"

    @property
    def size(self) -> int:
        return int(np.prod(self.shape, dtype=np.int64))


class SharedArena:
    """
    Набор именованных буферов одной группы процессов.

    В многопроцессном режиме объект передаётся воркерам аргументом
    ``Process`` при старте: RawArray и Barrier переживают pickle только так.
    """

    def __init__(self, n_workers: int, ctx: BaseContext | None = None) -> None:
        if n_workers < 1:
            raise ValueError("n_workers must be >= 1")
        self.n_workers = n_workers
        self.shared = ctx is not None
        self._ctx = ctx
        self._specs: Dict[str, BufferSpec] = {}
        self._raw: Dict[str, Any] = {}
        self._views: Dict[str, np.ndarray] = {}
        self.barrier = ctx.Barrier(n_workers) if ctx is not None else None
        self.closed = False

    # --- Выделение и доступ ---

    def allocate(self, name: str, shape: Tuple[int, ...], dtype: str = "float64") -> np.ndarray:
        """Выделяет буфер и возвращает NumPy-представление (заполнено нулями)."""
        if self.closed:
            raise RuntimeError("arena is closed")
        if name in self._specs:
            raise KeyError(f"buffer '{name}' already allocated")
        if dtype not in _TYPECODES:
            raise ValueError(f"Unsupported dtype: {dtype}")

        spec = BufferSpec(name, tuple(int(s) for s in shape), dtype)
        # RawArray нулевой длины не даёт корректного буфера для frombuffer
        n_items = max(spec.size, 1)
        if self._ctx is not None:
            self._raw[name] = self._ctx.RawArray(_TYPECODES[dtype], n_items)
        else:
            self._raw[name] = np.zeros(n_items, dtype=dtype)
        self._specs[name] = spec
        return self.view(name)

    def view(self, name: str) -> np.ndarray:
        """NumPy-представление буфера ``name`` (без копирования)."""
        if self.closed:
            raise RuntimeError("arena is closed")
        if name not in self._views:
            spec = self._specs[name]
            raw = self._raw[name]
            if isinstance(raw, np.ndarray):
                flat = raw
            else:
                flat = np.frombuffer(raw, dtype=spec.dtype)
            self._views[name] = flat[: spec.size].reshape(spec.shape)
        return self._views[name]

    def spec(self, name: str) -> BufferSpec:
        return self._specs[name]

    def __contains__(self, name: str) -> bool:
        return name in self._specs

    def close(self) -> None:
        """Освобождает буферы; повторный вызов ничего не делает."""
        if self.closed:
            return
        self._views.clear()
        self._raw.clear()
        self.closed = True

    # --- Передача воркерам ---

    def __getstate__(self) -> Dict[str, Any]:
        state = self.__dict__.copy()
        # представления NumPy пересоздаются в процессе-получателе
        state["_views"] = {}
        state["_ctx"] = None
        return state

    def __setstate__(self, state: Dict[str, Any]) -> None:
        self.__dict__.update(state)
