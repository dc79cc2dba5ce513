"""
Публичный интерфейс: распределённый k-means на coreset.

Пример:
    model = CoresetKMeans(n_clusters=8, n_restarts=5, n_workers=4, coreset_size=10_000)
    model.fit(X)
    model.centroids, model.labels, model.error
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any

import numpy as np

from coreset_kmeans.config import ClusteringConfig
from coreset_kmeans.core.coreset import Coreset
from coreset_kmeans.core.distance import MetricLike, resolve_metric
from coreset_kmeans.distributed.launcher import JobOutput, run_job
from coreset_kmeans.distributed.worker import JobSpec
from coreset_kmeans.errors import ConfigurationError, PreconditionError
from coreset_kmeans.metrics.timers import Timer
from coreset_kmeans.result import ClusteringResult


class CoresetKMeans:
    """
    K-means++ + Ллойд над группой процессов с разделяемыми окнами.

    Если задан ``coreset_size``, кластеризуется взвешенный coreset, а
    итоговая разметка полного набора строится по лучшим центроидам.

    ``logger`` получает сообщения основного процесса и, при n_workers == 1,
    сообщения единственного ранга. Процессы-воркеры пишут в пакетный логгер
    ``coreset_kmeans`` (``setup_logger`` с уровнем ``logger``), а не в сам
    переданный объект: его обработчики (например, FileHandler на другом
    логгере) сообщений воркеров не увидят.
    """

    def __init__(
        self,
        n_clusters: int,
        n_restarts: int = 5,
        n_workers: int = 1,
        coreset_size: int | None = None,
        distance: MetricLike = "euclidean",
        max_iter: int = 100,
        coreset_seeding: str = "kmeans++",
        allow_coreset_fallback: bool = True,
        random_state: int | None = None,
        start_method: str | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        try:
            metric = resolve_metric(distance)
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(str(exc)) from exc

        self.config = ClusteringConfig(
            n_clusters=n_clusters,
            n_restarts=n_restarts,
            n_workers=n_workers,
            coreset_size=coreset_size,
            max_iter=max_iter,
            coreset_seeding=coreset_seeding,
            allow_coreset_fallback=allow_coreset_fallback,
            random_state=random_state,
            distance=metric,
        )
        self.start_method = start_method
        self.logger = logger

        self.result_: ClusteringResult | None = None
        self.coreset_: Coreset | None = None
        self.t_fit: float = 0.0

    # --- Настройка ---

    def _update_config(self, **changes: Any) -> bool:
        """Применяет изменения; при ошибке конфигурация остаётся прежней."""
        try:
            self.config = replace(self.config, **changes)
        except ConfigurationError as exc:
            if self.logger:
                self.logger.warning(f"Rejected configuration change {changes}: {exc}")
            return False
        return True

    def set_num_clusters(self, n_clusters: int) -> bool:
        return self._update_config(n_clusters=n_clusters)

    def set_num_restarts(self, n_restarts: int) -> bool:
        return self._update_config(n_restarts=n_restarts)

    def set_num_workers(self, n_workers: int) -> bool:
        return self._update_config(n_workers=n_workers)

    def set_coreset_size(self, coreset_size: int | None) -> bool:
        return self._update_config(coreset_size=coreset_size)

    @property
    def n_clusters(self) -> int:
        return self.config.n_clusters

    @property
    def n_restarts(self) -> int:
        return self.config.n_restarts

    @property
    def n_workers(self) -> int:
        return self.config.n_workers

    # --- Результаты ---

    def _fitted(self) -> ClusteringResult:
        if self.result_ is None:
            raise RuntimeError("CoresetKMeans is not fitted yet, call fit() first")
        return self.result_

    @property
    def centroids(self) -> np.ndarray:
        return self._fitted().centroids

    @property
    def labels(self) -> np.ndarray:
        return self._fitted().labels

    @property
    def counts(self) -> np.ndarray:
        return self._fitted().counts

    @property
    def error(self) -> float:
        return self._fitted().error

    # --- Подготовка данных ---

    def _prepare(
        self, X: Any, n_points: int | None = None, n_features: int | None = None
    ) -> np.ndarray:
        """
        Проверяет предусловия и приводит данные к (N, F) float64 C-порядка.

        Данные могут быть плоским row-major буфером при явных n_points/n_features.

        Raises:
            PreconditionError: Если форма, размерность или значения некорректны
        """
        arr = np.asarray(X, dtype=np.float64)

        if n_points is not None or n_features is not None:
            if n_points is None or n_features is None:
                raise PreconditionError(
                    "dataset_shape", "n_points and n_features must be given together"
                )
            if arr.ndim == 2 and arr.shape[1] != n_features:
                raise PreconditionError(
                    "feature_dimension",
                    f"dataset rows have {arr.shape[1]} features, expected {n_features}",
                )
            if arr.size != n_points * n_features:
                raise PreconditionError(
                    "dataset_shape",
                    f"dataset holds {arr.size} values, expected {n_points} x {n_features}",
                )
            arr = arr.reshape(n_points, n_features)

        if arr.ndim != 2:
            raise PreconditionError("dataset_shape", f"expected a 2-D array, got shape {arr.shape}")
        N, F = arr.shape
        if N == 0 or F == 0:
            raise PreconditionError("empty_dataset", f"dataset has shape {arr.shape}")
        if not np.all(np.isfinite(arr)):
            raise PreconditionError("finite_values", "dataset contains NaN or infinite values")

        return np.ascontiguousarray(arr)

    def _make_spec(self, X: np.ndarray, build_only: bool) -> JobSpec:
        N, F = X.shape
        coreset_size = self.config.effective_coreset_size(N)
        n_fit = coreset_size if coreset_size is not None else N
        if not build_only and n_fit < self.config.n_clusters:
            raise PreconditionError(
                "too_few_points",
                f"cannot form {self.config.n_clusters} clusters from {n_fit} points",
            )
        return JobSpec(
            config=self.config,
            n_points=N,
            n_features=F,
            coreset_size=coreset_size,
            seed_entropy=int(np.random.SeedSequence(self.config.random_state).entropy),
            build_only=build_only,
            log_level=self.logger.getEffectiveLevel() if self.logger else None,
        )

    @staticmethod
    def _coreset_from(output: JobOutput) -> Coreset | None:
        if output.coreset_points is None:
            return None
        return Coreset(points=output.coreset_points, weights=output.coreset_weights)

    # --- Основные операции ---

    def fit(
        self, X: Any, n_points: int | None = None, n_features: int | None = None
    ) -> CoresetKMeans:
        """
        Кластеризует данные и сохраняет результат в ``result_``.

        Args:
            X: Массив (N, F) или плоский буфер длины N*F
            n_points: Число точек для плоского буфера
            n_features: Число признаков для плоского буфера

        Returns:
            self
        """
        data = self._prepare(X, n_points, n_features)
        spec = self._make_spec(data, build_only=False)

        if self.logger:
            self.logger.info(
                f"Fitting K={self.config.n_clusters} on N={spec.n_points} D={spec.n_features} "
                f"with {self.config.n_workers} worker(s), {self.config.n_restarts} restart(s), "
                f"coreset={spec.coreset_size}"
            )

        with Timer() as t_fit:
            output = run_job(data, spec, start_method=self.start_method, logger=self.logger)
        self.t_fit = t_fit.elapsed

        summary = output.summary
        self.coreset_ = self._coreset_from(output)
        self.result_ = ClusteringResult(
            labels=output.labels,
            centroids=output.centroids,
            counts=output.counts,
            error=float(summary["best_error"]),
            restart_errors=tuple(summary["restart_errors"]),
            best_restart=int(summary["best_restart"]),
            n_iter=int(summary["n_iter"]),
            converged=bool(summary["converged"]),
            dataset_error=float(summary["dataset_error"]),
            coreset=self.coreset_,
            error_histories=tuple(tuple(h) for h in summary["error_histories"]),
            timings=dict(summary["timings"]),
        )

        if self.logger:
            self.logger.info(
                f"Best restart {self.result_.best_restart + 1}/{self.config.n_restarts}: "
                f"error={self.result_.error:.6e}, dataset_error={self.result_.dataset_error:.6e}, "
                f"T_fit={self.t_fit:.6f}s"
            )
        return self

    def build_coreset(
        self, X: Any, n_points: int | None = None, n_features: int | None = None
    ) -> Coreset:
        """Строит только coreset (без кластеризации)."""
        if self.config.coreset_size is None:
            raise ConfigurationError("coreset_size must be set to build a coreset")
        data = self._prepare(X, n_points, n_features)
        spec = self._make_spec(data, build_only=True)
        output = run_job(data, spec, start_method=self.start_method, logger=self.logger)
        self.coreset_ = self._coreset_from(output)
        return self.coreset_

    def predict(self, X: Any) -> np.ndarray:
        """Номер ближайшего центроида для каждой строки X."""
        centroids = self.centroids
        data = self._prepare(X)
        if data.shape[1] != centroids.shape[1]:
            raise PreconditionError(
                "feature_dimension",
                f"X has {data.shape[1]} features, model was fitted with {centroids.shape[1]}",
            )
        return np.argmin(self.config.distance.squared_pairwise(data, centroids), axis=1)
