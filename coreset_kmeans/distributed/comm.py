"""
Коммуникатор группы процессов: барьер (fence) и немногочисленные
коллективные операции (allgather, allreduce, bcast).

Две реализации с общим интерфейсом:
- LocalCommunicator — один процесс, память NumPy;
- SharedMemoryCommunicator — группа процессов над ареной RawArray.

Редукции суммируют собранные строки в порядке рангов, поэтому каждый ранг
получает бит-в-бит одинаковый результат.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from typing import Any

import numpy as np

from coreset_kmeans.core.partition import Layout
from coreset_kmeans.distributed.arena import SharedArena
from coreset_kmeans.distributed.window import SharedWindow
from coreset_kmeans.errors import CoordinationError

SCRATCH = "scratch"


def scratch_width(n_workers: int, n_features: int, n_clusters: int) -> int:
    """Ширина строки буфера коллективов: вмещает самую длинную посылку."""
    return max(n_workers, n_features + 1, n_clusters + 1, 4)


class Communicator(ABC):
    """Интерфейс группы процессов."""

    def __init__(self, rank: int, size: int, arena: SharedArena, logger: Any | None = None) -> None:
        if not 0 <= rank < size:
            raise ValueError(f"rank {rank} out of range for size {size}")
        self.rank = rank
        self.size = size
        self.arena = arena
        self.logger = logger
        # номер эпохи: сколько барьеров пройдено
        self.epoch = 0

    @property
    def is_root(self) -> bool:
        return self.rank == 0

    def window(self, name: str, layout: Layout | None = None) -> SharedWindow:
        """Окно над буфером арены ``name``."""
        return SharedWindow(name, self.arena.view(name), self, layout)

    @abstractmethod
    def fence(self) -> None:
        """Коллективный барьер."""
        raise NotImplementedError

    @abstractmethod
    def allgather(self, values: Any) -> np.ndarray:
        """Собирает вектор каждого ранга: результат формы (size, len(values))."""
        raise NotImplementedError

    @abstractmethod
    def bcast(self, values: Any, root: int = 0) -> np.ndarray:
        """Рассылает вектор ранга ``root`` всем рангам."""
        raise NotImplementedError

    def abort(self) -> None:
        """Ломает барьер, чтобы соседи не зависли навсегда."""

    def allreduce_sum(self, values: Any) -> np.ndarray:
        gathered = self.allgather(values)
        out = gathered[0].copy()
        for row in gathered[1:]:
            out += row
        return out

    def bcast_scalar(self, value: float, root: int = 0) -> float:
        return float(self.bcast(np.array([value], dtype=np.float64), root=root)[0])

    def bcast_index(self, value: int, root: int = 0) -> int:
        return int(round(self.bcast_scalar(float(value), root=root)))


class LocalCommunicator(Communicator):
    """Группа из одного процесса: барьер только сдвигает эпоху."""

    def __init__(self, arena: SharedArena, logger: Any | None = None) -> None:
        super().__init__(rank=0, size=1, arena=arena, logger=logger)

    def fence(self) -> None:
        self.epoch += 1

    def allgather(self, values: Any) -> np.ndarray:
        return np.atleast_1d(np.asarray(values, dtype=np.float64)).ravel()[None, :].copy()

    def bcast(self, values: Any, root: int = 0) -> np.ndarray:
        if root != 0:
            raise ValueError(f"root {root} out of range for size 1")
        return np.atleast_1d(np.asarray(values, dtype=np.float64)).ravel().copy()


class SharedMemoryCommunicator(Communicator):
    """
    Группа процессов над общей ареной.

    Коллективы идут через окно ``scratch`` (size × width): ранг пишет свою
    строку, барьер, все читают, ещё один барьер перед повторным
    использованием буфера. Таймаутов нет: если сосед не дошёл до барьера,
    группа ждёт бесконечно.
    """

    def __init__(self, rank: int, arena: SharedArena, logger: Any | None = None) -> None:
        if arena.barrier is None:
            raise ValueError("SharedMemoryCommunicator requires a shared arena")
        super().__init__(rank=rank, size=arena.n_workers, arena=arena, logger=logger)
        self._barrier = arena.barrier
        self._scratch = self.window(SCRATCH, Layout([1] * self.size))
        self._width = self._scratch.shape[1]

    def fence(self) -> None:
        try:
            self._barrier.wait()
        except threading.BrokenBarrierError:
            raise CoordinationError(
                f"rank {self.rank}: fence at epoch {self.epoch} is broken, a peer process failed"
            ) from None
        self.epoch += 1
        if self.logger:
            self.logger.debug(f"fence passed, epoch={self.epoch}")

    def abort(self) -> None:
        self._barrier.abort()

    def _payload(self, values: Any) -> np.ndarray:
        flat = np.atleast_1d(np.asarray(values, dtype=np.float64)).ravel()
        if flat.size > self._width:
            raise ValueError(
                f"collective payload of {flat.size} values exceeds scratch width {self._width}"
            )
        return flat

    def allgather(self, values: Any) -> np.ndarray:
        flat = self._payload(values)
        row = np.zeros(self._width, dtype=np.float64)
        row[: flat.size] = flat
        self._scratch.set(self.rank, row)
        self.fence()
        gathered = self._scratch.get(slice(None))[:, : flat.size]
        self.fence()
        return gathered

    def bcast(self, values: Any, root: int = 0) -> np.ndarray:
        if not 0 <= root < self.size:
            raise ValueError(f"root {root} out of range for size {self.size}")
        flat = self._payload(values)
        if self.rank == root:
            row = np.zeros(self._width, dtype=np.float64)
            row[: flat.size] = flat
            self._scratch.set(self.rank, row)
        self.fence()
        out = self._scratch.get(root)[: flat.size]
        self.fence()
        return out
