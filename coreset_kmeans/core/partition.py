"""
Разбиение индексного пространства между процессами.

Каждому рангу принадлежит непрерывный полуинтервал [start, end); интервалы
не пересекаются и в объединении дают [0, n). Запись в строку окна разрешена
только рангу-владельцу, чтение — любому рангу после барьера.
"""

from __future__ import annotations

from bisect import bisect_right
from dataclasses import dataclass
from typing import Iterator, List, Sequence


@dataclass(frozen=True)
class Partition:
    """Часть индексного пространства одного ранга."""

    rank: int
    start: int
    end: int

    @property
    def size(self) -> int:
        return self.end - self.start

    @property
    def slice(self) -> slice:
        return slice(self.start, self.end)

    def __contains__(self, index: int) -> bool:
        return self.start <= index < self.end


class Layout:
    """Отображение индекс → ранг-владелец для окна длины ``total``."""

    def __init__(self, counts: Sequence[int]) -> None:
        counts = [int(c) for c in counts]
        if not counts:
            raise ValueError("layout needs at least one part")
        if any(c < 0 for c in counts):
            raise ValueError("part sizes must be non-negative")

        self.counts: List[int] = counts
        self.offsets: List[int] = [0]
        for c in counts:
            self.offsets.append(self.offsets[-1] + c)

    @classmethod
    def even(cls, n: int, n_parts: int) -> Layout:
        """Почти равное разбиение: остаток n % n_parts — по одной строке младшим рангам."""
        if n < 0 or n_parts <= 0:
            raise ValueError(f"Invalid layout request: n={n}, n_parts={n_parts}")
        base, rem = divmod(n, n_parts)
        return cls([base + (1 if r < rem else 0) for r in range(n_parts)])

    @classmethod
    def from_counts(cls, counts: Sequence[int]) -> Layout:
        """Разбиение по явно заданным размерам частей (например, выборка coreset)."""
        return cls(counts)

    @property
    def n_parts(self) -> int:
        return len(self.counts)

    @property
    def total(self) -> int:
        return self.offsets[-1]

    def partition(self, rank: int) -> Partition:
        if not 0 <= rank < self.n_parts:
            raise IndexError(f"rank {rank} out of range for {self.n_parts} parts")
        return Partition(rank, self.offsets[rank], self.offsets[rank + 1])

    def owner(self, index: int) -> int:
        """Ранг, владеющий строкой ``index``."""
        if not 0 <= index < self.total:
            raise IndexError(f"index {index} out of range [0, {self.total})")
        # пустые части пропускаются: bisect_right находит последний offset <= index
        return bisect_right(self.offsets, index) - 1

    def __iter__(self) -> Iterator[Partition]:
        return (self.partition(r) for r in range(self.n_parts))

    def __eq__(self, other: object) -> bool:
        return isinstance(other, Layout) and self.counts == other.counts

    def __hash__(self) -> int:
        return hash(tuple(self.counts))

    def __repr__(self) -> str:
        return f"Layout(counts={self.counts})"
