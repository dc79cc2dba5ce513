"""
Запуск задания: выделение арены, копирование данных, запуск рангов,
ожидание результатов и однократное освобождение ресурсов.
"""

from __future__ import annotations

import multiprocessing
import queue as queue_module
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import numpy as np

from coreset_kmeans.distributed.arena import SharedArena
from coreset_kmeans.distributed.comm import LocalCommunicator
from coreset_kmeans.distributed.worker import ClusterWorker, JobSpec, worker_main
from coreset_kmeans.errors import CoordinationError
from coreset_kmeans.utils.logging import RankLogger, format_rank_prefix

POLL_INTERVAL = 0.1
JOIN_TIMEOUT = 5.0


@dataclass
class JobOutput:
    """Сводка ранга 0 и копии итоговых буферов."""

    summary: Dict[str, Any]
    centroids: Optional[np.ndarray] = None
    labels: Optional[np.ndarray] = None
    counts: Optional[np.ndarray] = None
    coreset_points: Optional[np.ndarray] = None
    coreset_weights: Optional[np.ndarray] = None


def _allocate(arena: SharedArena, spec: JobSpec, X: np.ndarray) -> None:
    for buf in spec.buffers():
        arena.allocate(buf.name, buf.shape, buf.dtype)
    # данные копируются в общую память один раз
    arena.view("data")[:] = X


def _collect(arena: SharedArena, spec: JobSpec, summary: Dict[str, Any]) -> JobOutput:
    out = JobOutput(summary=summary)
    if spec.coreset_size is not None:
        out.coreset_points = arena.view("coreset_points").copy()
        out.coreset_weights = arena.view("coreset_weights").copy()
    if not spec.build_only:
        out.centroids = arena.view("best_centroids").copy()
        out.labels = arena.view(spec.labels_buffer).copy()
        out.counts = arena.view(spec.counts_buffer).copy()
    return out


def _root_cause(errors: List[BaseException]) -> BaseException:
    """Первичная ошибка: CoordinationError соседей — лишь её следствие."""
    for exc in errors:
        if not isinstance(exc, CoordinationError):
            return exc
    return errors[0]


def _run_processes(
    ctx: multiprocessing.context.BaseContext,
    arena: SharedArena,
    spec: JobSpec,
    logger: Any | None,
) -> Dict[str, Any]:
    n_workers = arena.n_workers
    results: Any = ctx.Queue()
    procs = [
        ctx.Process(
            target=worker_main,
            args=(rank, arena, spec, results),
            name=f"coreset-kmeans-{rank}",
            daemon=True,
        )
        for rank in range(n_workers)
    ]
    for p in procs:
        p.start()
    if logger:
        logger.info(f"Started {n_workers} worker processes")

    summary: Dict[str, Any] | None = None
    errors: List[BaseException] = []
    pending = set(range(n_workers))
    try:
        while pending:
            try:
                status, rank, payload = results.get(timeout=POLL_INTERVAL)
            except queue_module.Empty:
                # воркер, завершившийся штатно, всегда успевает отправить сообщение
                crashed = sorted(r for r in pending if procs[r].exitcode not in (None, 0))
                if crashed:
                    arena.barrier.abort()
                    if errors:
                        break
                    codes = {r: procs[r].exitcode for r in crashed}
                    raise CoordinationError(
                        f"worker process(es) {crashed} exited without reporting, exit codes: {codes}"
                    )
                continue

            pending.discard(rank)
            if status == "ok":
                if rank == 0:
                    summary = payload
            else:
                errors.append(payload)
                arena.barrier.abort()

        if errors:
            raise _root_cause(errors)
        if summary is None:
            raise CoordinationError("rank 0 finished without a summary")
        return summary
    finally:
        for p in procs:
            p.join(timeout=JOIN_TIMEOUT)
            if p.is_alive():
                p.terminate()
                p.join()
        results.close()
        results.join_thread()


def run_job(
    X: np.ndarray,
    spec: JobSpec,
    start_method: str | None = None,
    logger: Any | None = None,
) -> JobOutput:
    """
    Выполняет задание на группе из ``spec.config.n_workers`` рангов.

    Один ранг — локальный режим в текущем процессе; иначе запускаются
    процессы ``multiprocessing`` (метод запуска — ``start_method`` или
    платформенный по умолчанию).

    Args:
        X: Данные (N, F), float64, C-порядок
        spec: Описание задания
        start_method: "fork", "spawn", "forkserver" или None
        logger: Логгер основного процесса

    Returns:
        JobOutput со сводкой и копиями итоговых массивов
    """
    n_workers = spec.config.n_workers
    ctx = multiprocessing.get_context(start_method) if n_workers > 1 else None
    arena = SharedArena(n_workers, ctx)
    try:
        _allocate(arena, spec, X)
        if n_workers == 1:
            rank_logger = RankLogger(logger, format_rank_prefix(0, 1)) if logger else None
            comm = LocalCommunicator(arena, rank_logger)
            summary = ClusterWorker(comm, spec, rank_logger).run()
        else:
            summary = _run_processes(ctx, arena, spec, logger)
        return _collect(arena, spec, summary)
    finally:
        arena.close()
