"""
Задание одного ранга группы: построение coreset, рестарты k-means++ + Ллойд,
выбор лучшего результата и итоговая разметка полного набора.
"""

from __future__ import annotations

import pickle
import traceback
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import numpy as np

from coreset_kmeans.config import ClusteringConfig
from coreset_kmeans.core.coreset import CoresetSampler
from coreset_kmeans.core.lloyd import UNASSIGNED, LloydEngine, partials_width
from coreset_kmeans.core.partition import Layout
from coreset_kmeans.core.seeding import KMeansPlusPlusSeeder
from coreset_kmeans.core.selection import BestResultSelector, Candidate, global_best
from coreset_kmeans.distributed.arena import BufferSpec, SharedArena
from coreset_kmeans.distributed.comm import (
    SCRATCH,
    Communicator,
    SharedMemoryCommunicator,
    scratch_width,
)
from coreset_kmeans.distributed.window import SharedWindow
from coreset_kmeans.errors import CoordinationError
from coreset_kmeans.metrics.timers import PhaseTimings, Timer
from coreset_kmeans.utils.logging import RankLogger, format_rank_prefix, setup_logger


@dataclass(frozen=True)
class JobSpec:
    """Всё, что нужно рангу для выполнения задания (передаётся через pickle)."""

    config: ClusteringConfig
    n_points: int
    n_features: int
    coreset_size: Optional[int]
    seed_entropy: int
    build_only: bool = False
    log_level: Optional[int] = None

    @property
    def n_fit(self) -> int:
        """Число кластеризуемых точек: размер coreset или N."""
        return self.coreset_size if self.coreset_size is not None else self.n_points

    def buffers(self) -> List[BufferSpec]:
        """План буферов арены для этого задания."""
        P = self.config.n_workers
        K = self.config.n_clusters
        N, F, n = self.n_points, self.n_features, self.n_fit

        plan = [
            BufferSpec("data", (N, F)),
            BufferSpec(SCRATCH, (P, scratch_width(P, F, K))),
            BufferSpec("centroids", (K, F)),
        ]
        if self.coreset_size is not None:
            plan += [
                BufferSpec("coreset_points", (n, F)),
                BufferSpec("coreset_weights", (n,)),
            ]
        if self.build_only:
            return plan

        plan += [
            BufferSpec("counts", (K,), "int64"),
            BufferSpec("partials", (P, partials_width(K, F))),
            BufferSpec("assignment", (n,), "int64"),
            BufferSpec("best_assignment", (n,), "int64"),
            BufferSpec("best_centroids", (K, F)),
            BufferSpec("best_counts", (K,), "int64"),
        ]
        if self.coreset_size is not None:
            plan += [
                BufferSpec("labels", (N,), "int64"),
                BufferSpec("label_counts", (K,), "int64"),
            ]
        return plan

    @property
    def labels_buffer(self) -> str:
        return "labels" if self.coreset_size is not None else "best_assignment"

    @property
    def counts_buffer(self) -> str:
        return "label_counts" if self.coreset_size is not None else "best_counts"


class ClusterWorker:
    """Выполняет задание на одном ранге; все ранги выполняют одинаковый код."""

    def __init__(self, comm: Communicator, spec: JobSpec, logger: Any | None = None) -> None:
        self.comm = comm
        self.spec = spec
        self.config = spec.config
        self.metric = spec.config.distance
        self.logger = logger
        # сводные сообщения пишет только ранг 0
        self.root_logger = logger if comm.is_root else None
        self.timings = PhaseTimings()

        seeds = np.random.SeedSequence(spec.seed_entropy).spawn(comm.size + 1)
        self.collective_rng = np.random.default_rng(seeds[0])
        self.local_rng = np.random.default_rng(seeds[1 + comm.rank])

    # --- Этапы ---

    def _build_coreset(self, data: SharedWindow, centroids: SharedWindow) -> tuple[SharedWindow, SharedWindow]:
        sampler = CoresetSampler(
            self.comm,
            self.metric,
            self.collective_rng,
            self.local_rng,
            seeding=self.config.coreset_seeding,
            logger=self.logger,
        )
        with Timer() as t:
            layout = sampler.sample(
                data,
                self.spec.coreset_size,
                self.config.n_clusters,
                centroids,
                self.comm.window("coreset_points"),
                self.comm.window("coreset_weights"),
            )
        self.timings.add("coreset", t.elapsed)
        if self.root_logger:
            self.root_logger.info(
                f"Coreset built: m={layout.total}, per-rank={layout.counts}, T_coreset={t.elapsed:.6f}s"
            )
        return (
            self.comm.window("coreset_points", layout),
            self.comm.window("coreset_weights", layout),
        )

    def _reset(self, assignment: SharedWindow, counts: SharedWindow) -> None:
        """Сброс окон перед рестартом (только свои строки) и барьер."""
        assignment.set(assignment.owned.slice, UNASSIGNED)
        counts.set(counts.owned.slice, 0)
        assignment.fence()

    def _snapshot(self, sources: Dict[str, SharedWindow], targets: Dict[str, SharedWindow]) -> None:
        """Копирует свои строки текущего состояния в окна best_*."""
        for name, source in sources.items():
            target = targets[name]
            target.set(source.owned.slice, source.local())
        self.comm.fence()

    def _label_dataset(self, data: SharedWindow, best_centroids: SharedWindow) -> float:
        """Назначает каждую точку полного набора ближайшему лучшему центроиду."""
        K = self.config.n_clusters
        local = data.local()
        C = best_centroids.get(slice(None))
        d2 = self.metric.squared_pairwise(local, C)
        labels = np.argmin(d2, axis=1) if local.shape[0] else np.empty(0, dtype=np.int64)
        local_error = float(d2[np.arange(local.shape[0]), labels].sum())

        labels_win = self.comm.window("labels", data.layout)
        labels_win.set(data.owned.slice, labels)

        local_counts = np.bincount(labels, minlength=K).astype(np.float64)
        totals = self.comm.allreduce_sum(np.concatenate([local_counts, [local_error]]))

        label_counts = self.comm.window("label_counts")
        owned = label_counts.owned
        label_counts.set(owned.slice, np.rint(totals[:K][owned.slice]).astype(np.int64))
        label_counts.fence()
        return float(totals[K])

    # --- Основной сценарий ---

    def run(self) -> Dict[str, Any]:
        with Timer() as t_total:
            summary = self._run()
        self.timings.add("total", t_total.elapsed)
        summary["timings"] = self.timings.as_dict()
        return summary

    def _run(self) -> Dict[str, Any]:
        K = self.config.n_clusters
        data = self.comm.window("data")
        centroids = self.comm.window("centroids")

        if self.spec.coreset_size is not None:
            points, weights = self._build_coreset(data, centroids)
        else:
            points, weights = data, None

        summary: Dict[str, Any] = {"coreset_size": points.shape[0]}
        if self.spec.build_only:
            return summary

        assignment = self.comm.window("assignment", points.layout)
        counts = self.comm.window("counts")
        partials = self.comm.window("partials", Layout([1] * self.comm.size))
        best = {
            "assignment": self.comm.window("best_assignment", points.layout),
            "centroids": self.comm.window("best_centroids"),
            "counts": self.comm.window("best_counts"),
        }

        seeder = KMeansPlusPlusSeeder(self.comm, self.metric, self.collective_rng, self.logger)
        engine = LloydEngine(
            self.comm,
            self.metric,
            max_iter=self.config.max_iter,
            logger=self.root_logger,
            timings=self.timings,
        )
        engine.check_windows(points, weights, assignment, centroids, counts, partials)
        selector = BestResultSelector()

        outcomes = []
        for restart in range(self.config.n_restarts):
            self._reset(assignment, counts)
            with Timer() as t_seed:
                seeder.seed(points, weights, centroids)
            self.timings.add("seeding", t_seed.elapsed)

            outcome = engine.run(points, weights, assignment, centroids, counts, partials, restart)
            outcomes.append(outcome)

            candidate = global_best(self.comm, Candidate(outcome.error, restart, self.comm.rank))
            improved = selector.offer(candidate)
            if improved:
                self._snapshot(
                    {"assignment": assignment, "centroids": centroids, "counts": counts}, best
                )

            if self.root_logger:
                mark = " (new best)" if improved else ""
                self.root_logger.info(
                    f"Restart {restart + 1}/{self.config.n_restarts}: error={outcome.error:.6e}, "
                    f"iterations={outcome.n_iter}, converged={outcome.converged}{mark}"
                )

        best_candidate = selector.best
        if best_candidate is None:
            raise CoordinationError("no restart produced a finite clustering error")
        winner = outcomes[best_candidate.restart]

        if self.spec.coreset_size is not None:
            dataset_error = self._label_dataset(data, best["centroids"])
        else:
            dataset_error = winner.error

        summary.update(
            restart_errors=[o.error for o in outcomes],
            error_histories=[list(o.error_history) for o in outcomes],
            best_restart=best_candidate.restart,
            best_error=best_candidate.error,
            n_iter=winner.n_iter,
            converged=winner.converged,
            dataset_error=dataset_error,
        )
        return summary


def _portable(exc: BaseException) -> BaseException:
    """Исключение, которое можно передать через очередь процессов."""
    try:
        pickle.dumps(exc)
        return exc
    except Exception:  # noqa: BLE001
        return CoordinationError(f"{type(exc).__name__}: {exc}")


def worker_main(rank: int, arena: SharedArena, spec: JobSpec, queue: Any) -> None:
    """Точка входа процесса-воркера."""
    logger = None
    if spec.log_level is not None:
        logger = RankLogger(setup_logger(spec.log_level), format_rank_prefix(rank, arena.n_workers))

    comm = SharedMemoryCommunicator(rank, arena, logger)
    try:
        summary = ClusterWorker(comm, spec, logger).run()
    except Exception as exc:  # noqa: BLE001
        if logger and not isinstance(exc, CoordinationError):
            logger.error(f"worker failed: {exc!r}\n{traceback.format_exc()}")
        queue.put(("error", rank, _portable(exc)))
        # соседи, ждущие на барьере, получат CoordinationError
        comm.abort()
        return
    queue.put(("ok", rank, summary if comm.is_root else None))
