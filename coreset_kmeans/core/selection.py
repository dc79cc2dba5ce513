"""
Выбор лучшего результата по рестартам и процессам.

Каждый кандидат — (ошибка, номер рестарта, ранг); минимум берётся по этому
кортежу, так что при равной ошибке выигрывает более ранний рестарт, затем
младший ранг.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from coreset_kmeans.distributed.comm import Communicator


@dataclass(frozen=True, order=True)
class Candidate:
    error: float
    restart: int
    rank: int


def global_best(comm: Communicator, candidate: Candidate) -> Candidate:
    """Глобальный минимум кандидатов всех рангов (allgather + min)."""
    rows = comm.allgather([candidate.error, candidate.restart, candidate.rank])
    gathered = [Candidate(float(e), int(round(r)), int(round(p))) for e, r, p in rows]
    valid = [c for c in gathered if not math.isnan(c.error)]
    return min(valid) if valid else gathered[0]


class BestResultSelector:
    """Хранит лучшего кандидата; принимает только строгое улучшение."""

    def __init__(self) -> None:
        self.best: Candidate | None = None

    def reset(self) -> None:
        self.best = None

    def offer(self, candidate: Candidate) -> bool:
        """True, если кандидат стал новым лучшим."""
        if math.isnan(candidate.error):
            return False
        if self.best is None or candidate < self.best:
            self.best = candidate
            return True
        return False
