"""
Построение coreset выборкой по чувствительности (sensitivity sampling).

Каждой точке сопоставляется d_i — квадрат расстояния до ближайшего центра
дешёвого начального набора. Вероятность попадания точки в выборку
пропорциональна d_i, а её вес в coreset — обратная вероятность,
масштабированная на размер выборки: w_i = T / (m * d_i), T = Σ d_i.
Тогда математическое ожидание взвешенной суммы квадратов расстояний
совпадает с полной, а сумма весов в среднем ≈ N.

Распределённый вариант: ранг 0 разыгрывает число выборок каждого ранга
(мультиномиальное по долям T_p / T), затем каждый ранг выбирает точки
только из своей части данных. Полный набор точек никуда не собирается.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import numpy as np

from coreset_kmeans.core.distance import DistanceMetric
from coreset_kmeans.core.partition import Layout
from coreset_kmeans.core.sampling import weighted_random_sample
from coreset_kmeans.core.seeding import KMeansPlusPlusSeeder

if TYPE_CHECKING:
    from coreset_kmeans.distributed.comm import Communicator
    from coreset_kmeans.distributed.window import SharedWindow

SEEDING_METHODS = ("kmeans++", "mean")


@dataclass(frozen=True)
class Coreset:
    """Взвешенная подвыборка: точки (m, F) и положительные веса (m,)."""

    points: np.ndarray
    weights: np.ndarray

    def __post_init__(self) -> None:
        if self.points.ndim != 2 or self.weights.shape != (self.points.shape[0],):
            raise ValueError(
                f"Inconsistent coreset shapes: points {self.points.shape}, "
                f"weights {self.weights.shape}"
            )

    def __len__(self) -> int:
        return int(self.points.shape[0])

    @property
    def total_weight(self) -> float:
        return float(self.weights.sum())

    def cost(self, centroids: np.ndarray, metric: DistanceMetric) -> float:
        """Взвешенная сумма квадратов расстояний до ближайших центроидов."""
        d2 = metric.squared_pairwise(self.points, centroids).min(axis=1)
        return float(np.dot(self.weights, d2))


class CoresetSampler:
    """Распределённое построение coreset заданного размера."""

    def __init__(
        self,
        comm: Communicator,
        metric: DistanceMetric,
        collective_rng: np.random.Generator,
        local_rng: np.random.Generator,
        seeding: str = "kmeans++",
        logger: Any | None = None,
    ) -> None:
        if seeding not in SEEDING_METHODS:
            raise ValueError(f"Unknown coreset seeding '{seeding}', expected one of {SEEDING_METHODS}")
        self.comm = comm
        self.metric = metric
        self.collective_rng = collective_rng
        self.local_rng = local_rng
        self.seeding = seeding
        self.logger = logger

    # --- Начальные центры ---

    def _global_mean(self, data: SharedWindow) -> np.ndarray:
        local = data.local()
        payload = np.concatenate([local.sum(axis=0), [float(local.shape[0])]])
        total = self.comm.allreduce_sum(payload)
        return (total[:-1] / total[-1])[None, :]

    def _initial_centers(self, data: SharedWindow, n_centers: int, centroids: SharedWindow) -> np.ndarray:
        if self.seeding == "mean":
            return self._global_mean(data)
        seeder = KMeansPlusPlusSeeder(self.comm, self.metric, self.collective_rng, self.logger)
        return seeder.seed(data, None, centroids)[:n_centers]

    # --- Выборка ---

    def _sample_counts(self, shares: np.ndarray, size: int) -> np.ndarray:
        """Ранг 0 разыгрывает число выборок каждого ранга и рассылает его."""
        if self.comm.is_root:
            counts = self.collective_rng.multinomial(size, shares / shares.sum())
        else:
            counts = np.zeros(self.comm.size)
        return np.rint(self.comm.bcast(counts.astype(np.float64))).astype(np.int64)

    def sample(
        self,
        data: SharedWindow,
        size: int,
        n_centers: int,
        centroids: SharedWindow,
        out_points: SharedWindow,
        out_weights: SharedWindow,
    ) -> Layout:
        """
        Строит coreset и записывает его в окна ``out_points``/``out_weights``.

        Args:
            data: Окно исходных данных (N, F)
            size: Требуемый размер выборки m
            n_centers: Число центров начального набора (для kmeans++)
            centroids: Рабочее окно центроидов (используется посевом)
            out_points: Окно точек coreset (min(m, N), F)
            out_weights: Окно весов coreset (min(m, N),)

        Returns:
            Разметку владения строками coreset: ранг p владеет своими выборками
        """
        N = data.shape[0]
        local = data.local()
        owned = data.owned

        if size >= N:
            # вырожденный случай: весь набор с единичными весами
            out_points.with_layout(data.layout).set(owned.slice, local)
            out_weights.with_layout(data.layout).set(owned.slice, np.ones(owned.size))
            out_points.fence()
            if self.logger:
                self.logger.info(f"Coreset size {size} >= N={N}: using the full dataset")
            return data.layout

        centers = self._initial_centers(data, n_centers, centroids)
        d2 = self.metric.squared_pairwise(local, centers).min(axis=1)
        totals = self.comm.allgather(float(d2.sum()))[:, 0]
        T = float(totals.sum())

        if T > 0.0:
            counts = self._sample_counts(totals, size)
            m_local = int(counts[self.comm.rank])
            if m_local > 0:
                idx = weighted_random_sample(d2, self.local_rng.random(m_local))
                weights = T / (size * d2[idx])
            else:
                idx = np.empty(0, dtype=np.int64)
                weights = np.empty(0)
        else:
            # все расстояния нулевые: равномерная выборка
            part_sizes = np.array(data.layout.counts, dtype=np.float64)
            counts = self._sample_counts(part_sizes, size)
            m_local = int(counts[self.comm.rank])
            idx = self.local_rng.integers(owned.size, size=m_local) if m_local else np.empty(0, dtype=np.int64)
            weights = np.full(m_local, N / size)
            if self.logger:
                self.logger.warning("All sensitivity scores are zero, falling back to uniform sampling")

        layout = Layout.from_counts(counts)
        part = layout.partition(self.comm.rank)
        out_points.with_layout(layout).set(part.slice, local[idx])
        out_weights.with_layout(layout).set(part.slice, weights)
        out_points.fence()

        if self.logger:
            self.logger.debug(f"sampled {m_local} local points, T={T:.6e}")
        return layout
