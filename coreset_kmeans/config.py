from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from coreset_kmeans.core.coreset import SEEDING_METHODS
from coreset_kmeans.core.distance import DistanceMetric, EuclideanDistance
from coreset_kmeans.errors import ConfigurationError


@dataclass(frozen=True)
class ClusteringConfig:
    """
    Параметры распределённой кластеризации.

    - n_clusters: число кластеров K (> 0);
    - n_restarts: число независимых рестартов (> 0);
    - n_workers: число процессов группы (>= 1, 1 — локальный режим);
    - coreset_size: размер coreset m (> 0) или None — кластеризация всех точек;
    - max_iter: бюджет итераций Ллойда на рестарт;
    - coreset_seeding: начальные центры для оценки чувствительности;
    - allow_coreset_fallback: при m > N использовать весь набор, а не падать;
    - random_state: seed для воспроизводимости;
    - distance: метрика расстояния.
    """

    n_clusters: int
    n_restarts: int = 5
    n_workers: int = 1
    coreset_size: Optional[int] = None
    max_iter: int = 100
    coreset_seeding: str = "kmeans++"
    allow_coreset_fallback: bool = True
    random_state: Optional[int] = None
    distance: DistanceMetric = field(default_factory=EuclideanDistance)

    def __post_init__(self) -> None:
        _require_positive("n_clusters", self.n_clusters)
        _require_positive("n_restarts", self.n_restarts)
        _require_positive("n_workers", self.n_workers)
        _require_positive("max_iter", self.max_iter)
        if self.coreset_size is not None:
            _require_positive("coreset_size", self.coreset_size)
        if self.coreset_seeding not in SEEDING_METHODS:
            raise ConfigurationError(
                f"coreset_seeding must be one of {SEEDING_METHODS}, got {self.coreset_seeding!r}"
            )
        if not isinstance(self.distance, DistanceMetric):
            raise ConfigurationError(f"distance must be a DistanceMetric, got {self.distance!r}")

    def effective_coreset_size(self, n_points: int) -> Optional[int]:
        """
        Размер coreset для набора из ``n_points`` точек.

        Raises:
            ConfigurationError: Если m > N и откат на полный набор запрещён
        """
        if self.coreset_size is None:
            return None
        if self.coreset_size > n_points and not self.allow_coreset_fallback:
            raise ConfigurationError(
                f"coreset_size={self.coreset_size} exceeds the dataset size {n_points} "
                f"and allow_coreset_fallback is disabled"
            )
        return min(self.coreset_size, n_points)


def _require_positive(name: str, value: int) -> None:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ConfigurationError(f"{name} must be a positive integer, got {value!r}")
