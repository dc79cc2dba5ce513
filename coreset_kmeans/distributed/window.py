"""
Разделяемое окно: односторонний get/set поверх буфера арены.

Любой ранг читает любую строку, пишет — только свои строки (по Layout).
Записи других рангов гарантированно видны только после fence().
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import numpy as np

from coreset_kmeans.core.partition import Layout, Partition
from coreset_kmeans.errors import WindowAccessError

if TYPE_CHECKING:
    from coreset_kmeans.distributed.comm import Communicator


class SharedWindow:
    """Окно над буфером формы (n_rows, ...) с разметкой владения строк."""

    def __init__(
        self,
        name: str,
        buffer: np.ndarray,
        comm: "Communicator",
        layout: Layout | None = None,
    ) -> None:
        self.name = name
        self._buffer = buffer
        self.comm = comm
        self.layout = layout if layout is not None else Layout.even(buffer.shape[0], comm.size)
        if self.layout.total != buffer.shape[0]:
            raise ValueError(
                f"Layout of window '{name}' covers {self.layout.total} rows, "
                f"buffer has {buffer.shape[0]}"
            )
        if self.layout.n_parts != comm.size:
            raise ValueError(
                f"Layout of window '{name}' has {self.layout.n_parts} parts "
                f"for {comm.size} processes"
            )

    @property
    def shape(self) -> tuple:
        return self._buffer.shape

    @property
    def dtype(self) -> np.dtype:
        return self._buffer.dtype

    @property
    def owned(self) -> Partition:
        """Строки, которыми владеет текущий ранг."""
        return self.layout.partition(self.comm.rank)

    def _rows(self, index: int | slice) -> range:
        if isinstance(index, slice):
            if index.step not in (None, 1):
                raise IndexError("only contiguous slices are supported")
            return range(*index.indices(self.shape[0]))
        i = int(index)
        if not 0 <= i < self.shape[0]:
            raise IndexError(f"row {i} out of range for window '{self.name}'")
        return range(i, i + 1)

    def get(self, index: int | slice) -> Any:
        """Чтение строки или непрерывного диапазона строк (копия)."""
        self._rows(index)
        value = self._buffer[index]
        if isinstance(value, np.ndarray):
            return value.copy()
        return value.item()

    def set(self, index: int | slice, value: Any) -> None:
        """Запись строки или диапазона строк, принадлежащих текущему рангу."""
        rows = self._rows(index)
        if len(rows) == 0:
            return
        owned = self.owned
        if rows.start < owned.start or rows.stop > owned.end:
            raise WindowAccessError(
                f"rank {self.comm.rank} cannot write rows [{rows.start}, {rows.stop}) "
                f"of window '{self.name}', owned rows are [{owned.start}, {owned.end})"
            )
        self._buffer[index] = value

    def fence(self) -> None:
        """Коллективный барьер: после него видны все записи предыдущей фазы."""
        self.comm.fence()

    def local(self) -> np.ndarray:
        """Копия собственных строк ранга."""
        return self.get(self.owned.slice)

    def with_layout(self, layout: Layout) -> SharedWindow:
        """То же окно (тот же буфер) с другой разметкой владения."""
        return SharedWindow(self.name, self._buffer, self.comm, layout)

    def __repr__(self) -> str:
        return f"SharedWindow({self.name!r}, shape={self.shape}, layout={self.layout})"
