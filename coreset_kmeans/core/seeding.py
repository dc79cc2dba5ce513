"""
Распределённый посев k-means++.

Первый центр выбирается равномерно; каждый следующий — с вероятностью,
пропорциональной квадрату расстояния до ближайшего уже выбранного центра
(умноженному на вес точки). Суммы весов собираются со всех рангов до
розыгрыша; ранг 0 разыгрывает долю, ранг-владелец выбранной точки
рассылает её глобальный индекс.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import numpy as np

from coreset_kmeans.core.distance import DistanceMetric
from coreset_kmeans.core.sampling import weighted_random_selection
from coreset_kmeans.errors import PreconditionError

if TYPE_CHECKING:
    from coreset_kmeans.distributed.comm import Communicator
    from coreset_kmeans.distributed.window import SharedWindow


class KMeansPlusPlusSeeder:
    """Выбор K начальных центроидов по схеме k-means++."""

    def __init__(
        self,
        comm: Communicator,
        metric: DistanceMetric,
        rng: np.random.Generator,
        logger: Any | None = None,
    ) -> None:
        self.comm = comm
        self.metric = metric
        # коллективный генератор: используется только на ранге 0
        self.rng = rng
        self.logger = logger

    def _root_random(self) -> float:
        value = self.rng.random() if self.comm.is_root else 0.0
        return self.comm.bcast_scalar(value)

    def _root_integer(self, n: int) -> int:
        value = int(self.rng.integers(n)) if self.comm.is_root else 0
        return self.comm.bcast_index(value)

    def _draw_weighted(self, totals: np.ndarray, scores: np.ndarray, start: int) -> int:
        """
        Рулетка в два уровня: сначала ранг по локальным суммам, затем точка
        внутри ранга по остатку той же доли. Эквивалентно рулетке по всему
        набору точек в порядке рангов.
        """
        u = self._root_random()
        owner = weighted_random_selection(totals, u)

        index = 0
        if self.comm.rank == owner:
            target = u * float(totals.sum()) - float(totals[:owner].sum())
            frac = min(max(target / float(totals[owner]), 0.0), np.nextafter(1.0, 0.0))
            index = start + weighted_random_selection(scores, frac)
        return self.comm.bcast_index(index, root=owner)

    def _commit(self, points: SharedWindow, centroids: SharedWindow, c: int, index: int) -> np.ndarray:
        """Владелец строки c окна центроидов записывает точку index; барьер; чтение."""
        if centroids.layout.owner(c) == self.comm.rank:
            centroids.set(c, points.get(index))
        centroids.fence()
        return centroids.get(c)

    def seed(
        self,
        points: SharedWindow,
        weights: SharedWindow | None,
        centroids: SharedWindow,
    ) -> np.ndarray:
        """
        Заполняет окно центроидов и возвращает копию (K, F).

        Args:
            points: Окно точек (n, F); записи в него закончены до вызова
            weights: Окно весов (n,) или None для единичных весов
            centroids: Окно центроидов (K, F)

        Raises:
            PreconditionError: Если размерности окон не согласованы
        """
        n = points.shape[0]
        K = centroids.shape[0]
        if points.shape[1] != centroids.shape[1]:
            raise PreconditionError(
                "feature_dimension",
                f"points have {points.shape[1]} features, centroids have {centroids.shape[1]}",
            )
        if n == 0:
            raise PreconditionError("empty_dataset", "cannot seed centroids from an empty point set")

        local = points.local()
        owned = points.owned
        local_w = weights.local() if weights is not None else np.ones(owned.size)

        first = self._root_integer(n)
        chosen = self._commit(points, centroids, 0, first)
        min_d2 = self.metric.squared_pairwise(local, chosen[None, :])[:, 0]

        for c in range(1, K):
            scores = min_d2 * local_w
            totals = self.comm.allgather(float(scores.sum()))[:, 0]

            if float(totals.sum()) <= 0.0:
                # все точки совпадают с выбранными центрами
                index = self._root_integer(n)
                if self.logger:
                    self.logger.debug(f"k-means++: zero potential at centre {c}, uniform draw")
            else:
                index = self._draw_weighted(totals, scores, owned.start)

            chosen = self._commit(points, centroids, c, index)
            d2 = self.metric.squared_pairwise(local, chosen[None, :])[:, 0]
            np.minimum(min_d2, d2, out=min_d2)

        return centroids.get(slice(None))
