"""
Распределённый алгоритм Ллойда над разделяемыми окнами.

Итерация состоит из двух фаз, разделённых барьерами:
- назначение: каждый ранг пишет ближайший центроид для своих точек;
- обновление: каждый ранг пишет частичные суммы в свою строку окна
  ``partials``, затем владелец строки кластера суммирует их (в порядке
  рангов) и фиксирует новый центроид и счётчик.

Останов — когда ни одно назначение не изменилось либо исчерпан бюджет
итераций.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, List

import numpy as np

from coreset_kmeans.core.distance import DistanceMetric
from coreset_kmeans.errors import PreconditionError
from coreset_kmeans.metrics.timers import PhaseTimings, Timer

if TYPE_CHECKING:
    from coreset_kmeans.distributed.comm import Communicator
    from coreset_kmeans.distributed.window import SharedWindow

UNASSIGNED = -1


@dataclass
class RestartOutcome:
    """Итог одного рестарта."""

    restart: int
    error: float
    n_iter: int
    converged: bool
    error_history: List[float] = field(default_factory=list)


def partials_width(n_clusters: int, n_features: int) -> int:
    """Длина строки окна partials: суммы (K*F), масса (K), счётчики (K)."""
    return n_clusters * n_features + 2 * n_clusters


class LloydEngine:
    """Итерации Ллойда для одного рестарта."""

    def __init__(
        self,
        comm: Communicator,
        metric: DistanceMetric,
        max_iter: int = 100,
        logger: Any | None = None,
        timings: PhaseTimings | None = None,
    ) -> None:
        self.comm = comm
        self.metric = metric
        self.max_iter = max_iter
        self.logger = logger
        self.timings = timings if timings is not None else PhaseTimings()

    # --- Предусловия ---

    def check_windows(
        self,
        points: SharedWindow,
        weights: SharedWindow | None,
        assignment: SharedWindow,
        centroids: SharedWindow,
        counts: SharedWindow,
        partials: SharedWindow,
    ) -> None:
        """Проверяет согласованность окон; при нарушении рестарт прерывается."""
        n, F = points.shape
        K = centroids.shape[0]

        if len(centroids.shape) != 2 or centroids.shape[1] != F:
            raise PreconditionError(
                "feature_dimension",
                f"dataset has {F} features, centroid window has shape {centroids.shape}",
            )
        if assignment.shape != (n,):
            raise PreconditionError(
                "assignment_length",
                f"assignment array has shape {assignment.shape}, expected ({n},)",
            )
        if weights is not None and weights.shape != (n,):
            raise PreconditionError(
                "weight_length",
                f"weight array has shape {weights.shape}, expected ({n},)",
            )
        if counts.shape != (K,):
            raise PreconditionError(
                "centroid_count",
                f"count array has shape {counts.shape}, expected ({K},)",
            )
        if partials.shape != (self.comm.size, partials_width(K, F)):
            raise PreconditionError(
                "partials_shape",
                f"partials window has shape {partials.shape}, "
                f"expected ({self.comm.size}, {partials_width(K, F)})",
            )
        if assignment.layout != points.layout:
            raise PreconditionError(
                "layout_mismatch",
                "assignment and point windows must share the same ownership layout",
            )

    # --- Фазы ---

    def _assign(
        self, local: np.ndarray, local_w: np.ndarray, assignment: SharedWindow, centroids: SharedWindow
    ) -> tuple[int, float]:
        C = centroids.get(slice(None))
        d2 = self.metric.squared_pairwise(local, C)
        labels = np.argmin(d2, axis=1) if local.shape[0] else np.empty(0, dtype=np.int64)

        previous = assignment.local()
        changed = int(np.count_nonzero(labels != previous))
        local_error = float(np.dot(local_w, d2[np.arange(local.shape[0]), labels]))

        assignment.set(assignment.owned.slice, labels)
        assignment.fence()

        changed_total, error_total = self.comm.allreduce_sum([changed, local_error])
        return int(round(changed_total)), float(error_total)

    def _update(
        self,
        local: np.ndarray,
        local_w: np.ndarray,
        assignment: SharedWindow,
        centroids: SharedWindow,
        counts: SharedWindow,
        partials: SharedWindow,
    ) -> None:
        K, F = centroids.shape
        labels = assignment.local()

        sums = np.zeros((K, F), dtype=np.float64)
        mass = np.zeros(K, dtype=np.float64)
        members = np.zeros(K, dtype=np.float64)
        for k in range(K):
            mask = labels == k
            if not np.any(mask):
                continue
            w = local_w[mask]
            sums[k] = (local[mask] * w[:, None]).sum(axis=0)
            mass[k] = w.sum()
            members[k] = mask.sum()

        partials.set(self.comm.rank, np.concatenate([sums.ravel(), mass, members]))
        partials.fence()

        # accumulate-then-commit: владелец кластера суммирует строки всех рангов
        owned = centroids.owned
        if owned.size:
            rows = partials.get(slice(None))
            total_sums = rows[:, : K * F].reshape(self.comm.size, K, F)[:, owned.slice].sum(axis=0)
            total_mass = rows[:, K * F : K * F + K][:, owned.slice].sum(axis=0)
            total_members = rows[:, K * F + K :][:, owned.slice].sum(axis=0)

            new_centroids = centroids.get(owned.slice)
            non_empty = total_mass > 0
            # пустой кластер сохраняет прежний центроид
            new_centroids[non_empty] = total_sums[non_empty] / total_mass[non_empty, None]

            centroids.set(owned.slice, new_centroids)
            counts.set(owned.slice, np.rint(total_members).astype(np.int64))
        centroids.fence()

    def evaluate(
        self,
        points: SharedWindow,
        weights: SharedWindow | None,
        assignment: SharedWindow,
        centroids: SharedWindow,
    ) -> float:
        """Σ w · d(x, centroid[label])² по всем точкам группы."""
        local = points.local()
        local_w = weights.local() if weights is not None else np.ones(local.shape[0])
        labels = assignment.local()
        C = centroids.get(slice(None))
        if local.shape[0]:
            d2 = self.metric.squared_pairwise(local, C)[np.arange(local.shape[0]), labels]
            local_error = float(np.dot(local_w, d2))
        else:
            local_error = 0.0
        return float(self.comm.allreduce_sum(local_error)[0])

    # --- Основной цикл ---

    def run(
        self,
        points: SharedWindow,
        weights: SharedWindow | None,
        assignment: SharedWindow,
        centroids: SharedWindow,
        counts: SharedWindow,
        partials: SharedWindow,
        restart: int = 0,
    ) -> RestartOutcome:
        """
        Итерации Ллойда от текущих центроидов в окне ``centroids``.

        Ожидается, что окно назначений сброшено в UNASSIGNED, а центроиды
        уже посеяны (барьер пройден).
        """
        self.check_windows(points, weights, assignment, centroids, counts, partials)

        local = points.local()
        local_w = weights.local() if weights is not None else np.ones(local.shape[0])

        outcome = RestartOutcome(restart=restart, error=float("inf"), n_iter=0, converged=False)

        for i in range(self.max_iter):
            with Timer() as t_assign:
                changed, error = self._assign(local, local_w, assignment, centroids)
            with Timer() as t_update:
                self._update(local, local_w, assignment, centroids, counts, partials)

            self.timings.add("assign", t_assign.elapsed)
            self.timings.add("update", t_update.elapsed)
            outcome.error_history.append(error)
            outcome.n_iter = i + 1
            outcome.converged = changed == 0

            if self.logger and (i == 0 or (i + 1) % 10 == 0 or outcome.converged):
                status = " (converged)" if outcome.converged else ""
                self.logger.info(
                    f"  Restart {restart} iteration {i + 1}/{self.max_iter}{status} "
                    f"(changed={changed}, error={error:.6e}, "
                    f"T_assign={t_assign.elapsed:.6f}s, T_update={t_update.elapsed:.6f}s)"
                )

            if outcome.converged:
                break

        outcome.error = self.evaluate(points, weights, assignment, centroids)
        return outcome
