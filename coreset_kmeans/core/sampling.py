"""
Взвешенный случайный выбор индекса («рулетка»).

Один и тот же примитив используется и при построении coreset, и при посеве
k-means++: сумма весов умножается на случайную долю из [0, 1), затем веса
последовательно вычитаются, пока значение не станет ≤ 0; возвращается индекс
веса, на котором это произошло.
"""

from __future__ import annotations

import numpy as np


def _validated_weights(weights: np.ndarray) -> np.ndarray:
    w = np.asarray(weights, dtype=np.float64).ravel()
    if w.size == 0:
        raise ValueError("weights must not be empty")
    if np.any(w < 0) or not np.all(np.isfinite(w)):
        raise ValueError("weights must be finite and non-negative")
    return w


def weighted_random_sample(weights: np.ndarray, random_fracs: np.ndarray) -> np.ndarray:
    """
    Векторный вариант выбора: один индекс на каждую долю из ``random_fracs``.

    Args:
        weights: Неотрицательные веса (хотя бы один положительный)
        random_fracs: Случайные доли в [0, 1)

    Returns:
        Массив индексов int64 той же длины, что и ``random_fracs``

    Raises:
        ValueError: Если веса некорректны или доля вне [0, 1)
    """
    w = _validated_weights(weights)
    fracs = np.atleast_1d(np.asarray(random_fracs, dtype=np.float64))
    if np.any(fracs < 0.0) or np.any(fracs >= 1.0):
        raise ValueError("random fractions must lie in [0, 1)")

    cumulative = np.cumsum(w)
    total = cumulative[-1]
    if total <= 0.0:
        raise ValueError("at least one weight must be positive")

    targets = fracs * total
    # target - cumulative[i] <= 0  ⇔  первый i с cumulative[i] >= target;
    # при target == 0 берём первый положительный вес, а не нулевой.
    idx = np.where(
        targets > 0.0,
        np.searchsorted(cumulative, targets, side="left"),
        np.searchsorted(cumulative, 0.0, side="right"),
    )
    return np.minimum(idx, w.size - 1).astype(np.int64, copy=False)


def weighted_random_selection(weights: np.ndarray, random_frac: float) -> int:
    """
    Выбор одного индекса в [0, len(weights)) с вероятностью, пропорциональной весу.

    Пример: веса [1, 1, 1, 1] и доли 0.1, 0.3, 0.6, 0.9 дают индексы 0, 1, 2, 3.
    """
    return int(weighted_random_sample(weights, np.array([random_frac]))[0])
