from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

import numpy as np

from coreset_kmeans.core.coreset import Coreset


def _frozen(arr: np.ndarray) -> np.ndarray:
    out = np.array(arr, copy=True)
    out.setflags(write=False)
    return out


@dataclass(frozen=True)
class ClusteringResult:
    """
    Итог кластеризации (неизменяемый, массивы только для чтения).

    - labels: назначение каждой точки исходного набора (N,), значения в [0, K);
    - centroids: центроиды (K, F);
    - counts: число точек в каждом кластере (K,);
    - error: суммарная квадратичная ошибка лучшего рестарта (взвешенная
      весами coreset, если кластеризовался coreset);
    - restart_errors: ошибка каждого рестарта;
    - dataset_error: ошибка полного набора относительно итоговых центроидов.
    """

    labels: np.ndarray
    centroids: np.ndarray
    counts: np.ndarray
    error: float
    restart_errors: Tuple[float, ...]
    best_restart: int
    n_iter: int
    converged: bool
    dataset_error: float
    coreset: Optional[Coreset] = None
    error_histories: Tuple[Tuple[float, ...], ...] = ()
    timings: Dict[str, float] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "labels", _frozen(self.labels))
        object.__setattr__(self, "centroids", _frozen(self.centroids))
        object.__setattr__(self, "counts", _frozen(self.counts))

    @property
    def n_clusters(self) -> int:
        return int(self.centroids.shape[0])

    @property
    def n_points(self) -> int:
        return int(self.labels.shape[0])
