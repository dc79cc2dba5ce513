"""
Метрики расстояния.

Любая метрика предоставляет одну операцию ``distance(a, b) -> float`` и её
векторные варианты для матриц точек. Конкретная стратегия выбирается
вызывающим кодом (экземпляр, имя или обычная функция), а не проверкой типов
во время выполнения.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Callable, Union

import numpy as np


class DistanceMetric(ABC):
    """Базовый класс метрики: неотрицательная, детерминированная, без состояния."""

    name: str = "custom"

    @abstractmethod
    def __call__(self, a: np.ndarray, b: np.ndarray) -> float:
        """Расстояние между двумя точками."""
        raise NotImplementedError

    def pairwise(self, X: np.ndarray, Y: np.ndarray) -> np.ndarray:
        """Матрица расстояний (N, M) между строками X и строками Y."""
        out = np.empty((X.shape[0], Y.shape[0]), dtype=np.float64)
        for i, x in enumerate(X):
            for j, y in enumerate(Y):
                out[i, j] = self(x, y)
        return out

    def squared_pairwise(self, X: np.ndarray, Y: np.ndarray) -> np.ndarray:
        """Квадраты расстояний (N, M): именно их минимизирует k-means."""
        d = self.pairwise(X, Y)
        return d * d

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


class EuclideanDistance(DistanceMetric):
    """Евклидово расстояние (L2)."""

    name = "euclidean"

    def __call__(self, a: np.ndarray, b: np.ndarray) -> float:
        diff = np.asarray(a, dtype=np.float64) - np.asarray(b, dtype=np.float64)
        return float(np.sqrt(np.dot(diff, diff)))

    def pairwise(self, X: np.ndarray, Y: np.ndarray) -> np.ndarray:
        return np.sqrt(self.squared_pairwise(X, Y))

    def squared_pairwise(self, X: np.ndarray, Y: np.ndarray) -> np.ndarray:
        # (N, M, D) → (N, M)
        diff = X[:, None, :] - Y[None, :, :]
        return np.einsum("nmd,nmd->nm", diff, diff, optimize=True)


class ManhattanDistance(DistanceMetric):
    """Манхэттенское расстояние (L1)."""

    name = "manhattan"

    def __call__(self, a: np.ndarray, b: np.ndarray) -> float:
        diff = np.asarray(a, dtype=np.float64) - np.asarray(b, dtype=np.float64)
        return float(np.sum(np.abs(diff)))

    def pairwise(self, X: np.ndarray, Y: np.ndarray) -> np.ndarray:
        return np.abs(X[:, None, :] - Y[None, :, :]).sum(axis=2)


class CallableDistance(DistanceMetric):
    """
    Адаптер для произвольной функции ``f(a, b) -> float``.

    Для многопроцессного запуска функция должна быть объявлена на уровне
    модуля (передаётся воркерам через pickle).
    """

    def __init__(self, func: Callable[[np.ndarray, np.ndarray], float]) -> None:
        if not callable(func):
            raise TypeError("func must be callable")
        self.func = func
        self.name = getattr(func, "__name__", "custom")

    def __call__(self, a: np.ndarray, b: np.ndarray) -> float:
        return float(self.func(a, b))

    def __repr__(self) -> str:
        return f"CallableDistance({self.name})"


METRICS: dict[str, type[DistanceMetric]] = {
    EuclideanDistance.name: EuclideanDistance,
    ManhattanDistance.name: ManhattanDistance,
}

MetricLike = Union[str, DistanceMetric, Callable[[np.ndarray, np.ndarray], float]]


def resolve_metric(metric: MetricLike) -> DistanceMetric:
    """Приводит имя, экземпляр или функцию к объекту DistanceMetric."""
    if isinstance(metric, DistanceMetric):
        return metric
    if isinstance(metric, str):
        try:
            return METRICS[metric.lower()]()
        except KeyError:
            raise ValueError(
                f"Unknown distance metric '{metric}', expected one of {sorted(METRICS)}"
            ) from None
    if callable(metric):
        return CallableDistance(metric)
    raise TypeError(f"Unsupported distance metric: {metric!r}")
