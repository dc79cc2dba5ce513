"""
Таймеры для измерения фаз кластеризации.

Timer — контекстный менеджер на time.perf_counter(); PhaseTimings копит
суммарное время по фазам одного прогона (построение coreset, посев k-means++,
шаги назначения и обновления).
"""
from __future__ import annotations

import time
from dataclasses import asdict, dataclass
from typing import Any


class Timer:
    """
    Контекстный менеджер для измерения времени выполнения кода.

    Пример использования:
        with Timer() as t:
            # код для измерения
            pass
        elapsed_time = t.elapsed
    """

    def __init__(self) -> None:
        self.start: float = 0.0
        self.end: float = 0.0
        self.elapsed: float = 0.0

    def __enter__(self) -> Timer:
        self.start = time.perf_counter()
        return self

    def __exit__(self, *args: Any) -> None:
        self.end = time.perf_counter()
        self.elapsed = self.end - self.start


@dataclass
class PhaseTimings:
    """
    Суммарные тайминги по фазам:
    - t_coreset: построение coreset;
    - t_seeding: посев k-means++ (по всем рестартам);
    - t_assign: шаги назначения;
    - t_update: шаги обновления центроидов;
    - t_total: весь прогон воркера.
    """

    t_coreset: float = 0.0
    t_seeding: float = 0.0
    t_assign: float = 0.0
    t_update: float = 0.0
    t_total: float = 0.0

    def add(self, phase: str, elapsed: float) -> None:
        """Прибавляет ``elapsed`` секунд к фазе ``phase`` (coreset/seeding/assign/update/total)."""
        attr = f"t_{phase}"
        if not hasattr(self, attr):
            raise KeyError(f"Unknown phase: {phase}")
        setattr(self, attr, getattr(self, attr) + elapsed)

    @property
    def t_iter(self) -> float:
        # T_итерации = T_назначения + T_обновления
        return self.t_assign + self.t_update

    def as_dict(self) -> dict[str, float]:
        return asdict(self)
