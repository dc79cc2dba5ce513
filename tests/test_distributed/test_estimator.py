"""
Сквозные тесты CoresetKMeans: локальный режим и группа процессов.
"""

import logging
import multiprocessing
import os

import numpy as np
import pytest

from coreset_kmeans import (
    ConfigurationError,
    CoordinationError,
    CoresetKMeans,
    EuclideanDistance,
    ManhattanDistance,
    PreconditionError,
)
from coreset_kmeans.utils.logging import setup_logger


def _exploding_distance(a, b):
    raise RuntimeError("distance failure")


def _dying_distance(a, b):
    os._exit(3)


def _rank1_dying_distance(a, b):
    # умирает только ранг 1; ранг 0 доходит до барьера и ждёт
    if multiprocessing.current_process().name == "coreset-kmeans-1":
        os._exit(3)
    return float(np.linalg.norm(a - b))


def full_cost(X, centroids):
    return float(EuclideanDistance().squared_pairwise(X, centroids).min(axis=1).sum())


def same_partition(labels_a, labels_b):
    """Совпадение разбиений с точностью до перенумерации кластеров."""
    mapping = {}
    for a, b in zip(labels_a, labels_b):
        if mapping.setdefault(a, b) != b:
            return False
    return len(set(mapping.values())) == len(mapping)


class TestFitBasics:
    """Базовые свойства результата."""

    @pytest.mark.parametrize("n_workers", [1, 2])
    def test_separated_clusters(self, separated_dataset, n_workers):
        """Кластеры около (0,0) и (100,100) находятся точно."""
        X = separated_dataset.data
        model = CoresetKMeans(n_clusters=2, n_restarts=3, n_workers=n_workers, random_state=42)
        model.fit(X)

        assert same_partition(model.labels, separated_dataset.labels)
        centroids = model.centroids[np.argsort(model.centroids[:, 0])]
        np.testing.assert_allclose(centroids, [[0.0, 0.0], [100.0, 100.0]], atol=0.5)
        assert sorted(model.counts.tolist()) == [100, 100]

    @pytest.mark.parametrize("n_workers", [1, 3])
    def test_single_cluster_is_mean(self, small_dataset, n_workers):
        """K = 1: центроид — среднее, все метки нулевые."""
        X, _ = small_dataset
        model = CoresetKMeans(n_clusters=1, n_restarts=2, n_workers=n_workers, random_state=0)
        model.fit(X)

        np.testing.assert_allclose(model.centroids[0], X.mean(axis=0))
        assert np.all(model.labels == 0)
        assert model.counts.tolist() == [X.shape[0]]
        assert model.error == pytest.approx(full_cost(X, X.mean(axis=0, keepdims=True)))

    def test_labels_and_counts(self, blobs_dataset):
        """Каждая точка назначена кластеру из [0, K); счётчики согласованы."""
        X = blobs_dataset.data
        model = CoresetKMeans(n_clusters=4, n_restarts=2, random_state=1).fit(X)

        assert model.labels.shape == (X.shape[0],)
        assert np.all((model.labels >= 0) & (model.labels < 4))
        np.testing.assert_array_equal(model.counts, np.bincount(model.labels, minlength=4))

    def test_best_error_is_min_restart_error(self, blobs_dataset):
        X = blobs_dataset.data
        model = CoresetKMeans(n_clusters=4, n_restarts=5, random_state=3).fit(X)
        result = model.result_

        assert len(result.restart_errors) == 5
        assert result.error == min(result.restart_errors)
        assert result.best_restart == int(np.argmin(result.restart_errors))
        assert result.error == pytest.approx(full_cost(X, result.centroids))
        assert result.dataset_error == result.error

    def test_error_histories_non_increasing(self, blobs_dataset):
        X = blobs_dataset.data
        result = CoresetKMeans(n_clusters=4, n_restarts=3, random_state=2).fit(X).result_

        assert len(result.error_histories) == 3
        for history in result.error_histories:
            h = np.array(history)
            assert np.all(np.diff(h) <= 1e-9 * h[0])

    def test_result_is_read_only(self, small_dataset):
        X, _ = small_dataset
        model = CoresetKMeans(n_clusters=2, n_restarts=1, random_state=0).fit(X)

        with pytest.raises(ValueError):
            model.labels[0] = 1
        with pytest.raises(ValueError):
            model.centroids[0, 0] = 0.0

    def test_timings_reported(self, small_dataset):
        X, _ = small_dataset
        model = CoresetKMeans(n_clusters=2, n_restarts=2, random_state=0).fit(X)

        timings = model.result_.timings
        assert timings["t_total"] > 0
        assert timings["t_seeding"] > 0
        assert timings["t_coreset"] == 0.0
        assert model.t_fit >= timings["t_total"]

    def test_predict_matches_labels(self, blobs_dataset):
        X = blobs_dataset.data
        model = CoresetKMeans(n_clusters=4, n_restarts=2, random_state=5).fit(X)
        np.testing.assert_array_equal(model.predict(X), model.labels)

    def test_manhattan_distance(self, separated_dataset):
        X = separated_dataset.data
        model = CoresetKMeans(n_clusters=2, n_restarts=2, distance="manhattan", random_state=0)
        model.fit(X)

        assert isinstance(model.config.distance, ManhattanDistance)
        assert same_partition(model.labels, separated_dataset.labels)

    def test_flat_buffer(self, blobs_dataset):
        """Плоский row-major буфер с явными размерами эквивалентен матрице."""
        X = blobs_dataset.data
        N, F = X.shape
        a = CoresetKMeans(n_clusters=4, n_restarts=2, random_state=9).fit(X)
        b = CoresetKMeans(n_clusters=4, n_restarts=2, random_state=9).fit(X.ravel(), n_points=N, n_features=F)

        np.testing.assert_array_equal(a.labels, b.labels)
        np.testing.assert_array_equal(a.centroids, b.centroids)


class TestParallelConsistency:
    """Группа процессов против локального прогона."""

    def test_parallel_matches_local(self, blobs_dataset):
        """n_workers = 2 и n_workers = 1 с одним seed дают одно и то же разбиение."""
        X = blobs_dataset.data
        local = CoresetKMeans(n_clusters=4, n_restarts=3, n_workers=1, random_state=11).fit(X)
        parallel = CoresetKMeans(n_clusters=4, n_restarts=3, n_workers=2, random_state=11).fit(X)

        np.testing.assert_array_equal(parallel.labels, local.labels)
        np.testing.assert_allclose(parallel.centroids, local.centroids, rtol=1e-9, atol=1e-9)
        assert parallel.error == pytest.approx(local.error, rel=1e-9)
        assert parallel.result_.best_restart == local.result_.best_restart

    def test_deterministic_with_seed(self, blobs_dataset):
        X = blobs_dataset.data
        a = CoresetKMeans(n_clusters=4, n_restarts=2, n_workers=2, random_state=4).fit(X)
        b = CoresetKMeans(n_clusters=4, n_restarts=2, n_workers=2, random_state=4).fit(X)

        np.testing.assert_array_equal(a.labels, b.labels)
        np.testing.assert_array_equal(a.centroids, b.centroids)
        assert a.result_.restart_errors == b.result_.restart_errors

    def test_coreset_deterministic_with_seed(self, blobs_dataset):
        """Coreset в группе процессов воспроизводится при фиксированном seed."""
        X = blobs_dataset.data
        runs = [
            CoresetKMeans(
                n_clusters=4, n_restarts=2, n_workers=3, coreset_size=80, random_state=13
            ).fit(X)
            for _ in range(3)
        ]

        first = runs[0]
        for other in runs[1:]:
            np.testing.assert_array_equal(other.coreset_.points, first.coreset_.points)
            np.testing.assert_array_equal(other.coreset_.weights, first.coreset_.weights)
            np.testing.assert_array_equal(other.labels, first.labels)
            np.testing.assert_array_equal(other.centroids, first.centroids)
            assert other.result_.restart_errors == first.result_.restart_errors

    def test_more_workers_than_clusters(self, simple_2d_dataset):
        """Ранги без строк центроидов и с одной точкой работают корректно."""
        X, _ = simple_2d_dataset
        model = CoresetKMeans(n_clusters=2, n_restarts=2, n_workers=4, random_state=0).fit(X)

        assert same_partition(model.labels, [0, 0, 0, 1, 1, 1])
        assert sorted(model.counts.tolist()) == [3, 3]

    def test_with_logger(self, small_dataset):
        """Логгер основного процесса и логгеры воркеров не мешают вычислению."""
        X, _ = small_dataset
        logger = setup_logger(logging.INFO)
        model = CoresetKMeans(n_clusters=2, n_restarts=1, n_workers=2, random_state=0, logger=logger)
        model.fit(X)

        assert model.labels.shape == (X.shape[0],)


class TestCoresetFit:
    """Кластеризация через coreset."""

    @pytest.mark.parametrize("n_workers", [1, 2])
    def test_coreset_fit(self, blobs_dataset, n_workers):
        X = blobs_dataset.data
        model = CoresetKMeans(
            n_clusters=4, n_restarts=3, n_workers=n_workers, coreset_size=120, random_state=21
        )
        model.fit(X)
        result = model.result_

        assert len(model.coreset_) == 120
        assert np.all(model.coreset_.weights > 0)
        assert result.coreset is model.coreset_
        # итоговая разметка строится по полному набору
        assert result.labels.shape == (X.shape[0],)
        assert result.counts.sum() == X.shape[0]
        np.testing.assert_array_equal(result.counts, np.bincount(result.labels, minlength=4))
        assert result.dataset_error == pytest.approx(full_cost(X, result.centroids))
        assert result.error == min(result.restart_errors)
        assert result.timings["t_coreset"] > 0

    def test_coreset_separates_clusters(self, separated_dataset):
        X = separated_dataset.data
        model = CoresetKMeans(n_clusters=2, n_restarts=3, coreset_size=40, random_state=0).fit(X)

        assert same_partition(model.labels, separated_dataset.labels)

    def test_coreset_larger_than_dataset(self, small_dataset):
        """m > N: используется весь набор с единичными весами."""
        X, _ = small_dataset
        model = CoresetKMeans(n_clusters=2, n_restarts=1, coreset_size=500, random_state=0).fit(X)

        assert len(model.coreset_) == X.shape[0]
        np.testing.assert_array_equal(model.coreset_.weights, np.ones(X.shape[0]))
        assert model.result_.dataset_error == pytest.approx(model.error)

    def test_coreset_larger_than_dataset_without_fallback(self, small_dataset):
        X, _ = small_dataset
        model = CoresetKMeans(
            n_clusters=2, coreset_size=500, allow_coreset_fallback=False, random_state=0
        )
        with pytest.raises(ConfigurationError):
            model.fit(X)

    @pytest.mark.parametrize("n_workers", [1, 2])
    def test_build_coreset(self, blobs_dataset, n_workers):
        X = blobs_dataset.data
        model = CoresetKMeans(n_clusters=4, n_workers=n_workers, coreset_size=64, random_state=8)
        coreset = model.build_coreset(X)

        assert len(coreset) == 64
        assert coreset.points.shape == (64, 3)
        assert model.result_ is None

    def test_build_coreset_requires_size(self, small_dataset):
        X, _ = small_dataset
        with pytest.raises(ConfigurationError):
            CoresetKMeans(n_clusters=2).build_coreset(X)


class TestConfiguration:
    """Отклонение некорректной конфигурации."""

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"n_clusters": 0},
            {"n_clusters": True},
            {"n_clusters": 2.5},
            {"n_clusters": 2, "n_restarts": 0},
            {"n_clusters": 2, "n_workers": 0},
            {"n_clusters": 2, "coreset_size": 0},
            {"n_clusters": 2, "max_iter": -1},
            {"n_clusters": 2, "coreset_seeding": "random"},
            {"n_clusters": 2, "distance": "cosine"},
            {"n_clusters": 2, "distance": 42},
        ],
    )
    def test_constructor_rejects(self, kwargs):
        with pytest.raises(ConfigurationError):
            CoresetKMeans(**kwargs)

    def test_setters(self):
        model = CoresetKMeans(n_clusters=3, n_restarts=2)

        assert not model.set_num_clusters(0)
        assert model.n_clusters == 3
        assert not model.set_num_restarts(-1)
        assert model.n_restarts == 2
        assert not model.set_num_workers(0)
        assert model.n_workers == 1
        assert not model.set_coreset_size(0)
        assert model.config.coreset_size is None

        assert model.set_num_clusters(5)
        assert model.n_clusters == 5
        assert model.set_num_workers(2)
        assert model.n_workers == 2
        assert model.set_coreset_size(100)
        assert model.config.coreset_size == 100
        assert model.set_coreset_size(None)

    def test_defaults(self):
        model = CoresetKMeans(n_clusters=3)
        assert model.n_restarts == 5
        assert model.config.max_iter == 100
        assert isinstance(model.config.distance, EuclideanDistance)


class TestPreconditions:
    """Некорректные данные отклоняются до запуска рангов."""

    def test_not_fitted(self):
        with pytest.raises(RuntimeError):
            _ = CoresetKMeans(n_clusters=2).centroids

    @pytest.mark.parametrize(
        "X,check",
        [
            (np.array([1.0, 2.0, 3.0]), "dataset_shape"),
            (np.zeros((0, 2)), "empty_dataset"),
            (np.array([[0.0, np.nan], [1.0, 1.0]]), "finite_values"),
            (np.array([[0.0, 0.0]]), "too_few_points"),
        ],
    )
    def test_bad_data(self, X, check):
        with pytest.raises(PreconditionError) as exc_info:
            CoresetKMeans(n_clusters=2).fit(X)
        assert exc_info.value.check == check

    def test_flat_buffer_size_mismatch(self):
        with pytest.raises(PreconditionError) as exc_info:
            CoresetKMeans(n_clusters=1).fit(np.zeros(7), n_points=2, n_features=4)
        assert exc_info.value.check == "dataset_shape"

    def test_flat_buffer_feature_mismatch(self):
        with pytest.raises(PreconditionError) as exc_info:
            CoresetKMeans(n_clusters=1).fit(np.zeros((4, 2)), n_points=2, n_features=4)
        assert exc_info.value.check == "feature_dimension"

    def test_predict_feature_mismatch(self, small_dataset):
        X, _ = small_dataset
        model = CoresetKMeans(n_clusters=2, n_restarts=1, random_state=0).fit(X)
        with pytest.raises(PreconditionError) as exc_info:
            model.predict(np.zeros((3, 5)))
        assert exc_info.value.check == "feature_dimension"


class TestFailures:
    """Сбой одного ранга роняет всё вычисление с исходной ошибкой."""

    @pytest.mark.parametrize("n_workers", [1, 2])
    def test_worker_error_propagates(self, small_dataset, n_workers):
        X, _ = small_dataset
        model = CoresetKMeans(
            n_clusters=2, n_restarts=1, n_workers=n_workers, distance=_exploding_distance
        )
        with pytest.raises(RuntimeError, match="distance failure"):
            model.fit(X)
        assert model.result_ is None

    def test_all_workers_die(self, small_dataset):
        """Воркеры, завершившиеся без сообщения, дают CoordinationError."""
        X, _ = small_dataset
        model = CoresetKMeans(n_clusters=2, n_restarts=1, n_workers=2, distance=_dying_distance)

        with pytest.raises(CoordinationError, match="exited without reporting"):
            model.fit(X)
        assert model.result_ is None

    def test_one_worker_dies(self, small_dataset):
        """Ранг 0, ждущий на барьере, освобождается после гибели ранга 1."""
        X, _ = small_dataset
        model = CoresetKMeans(
            n_clusters=2, n_restarts=1, n_workers=2, distance=_rank1_dying_distance
        )

        with pytest.raises(CoordinationError, match=r"\[1\] exited without reporting") as exc_info:
            model.fit(X)
        assert "{1: 3}" in str(exc_info.value)
        assert model.result_ is None
