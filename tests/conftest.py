"""
Общие фикстуры для всех тестов.
"""

import numpy as np
import pytest

from coreset_kmeans.core.lloyd import partials_width
from coreset_kmeans.core.partition import Layout
from coreset_kmeans.data.synthetic import generate_blobs_dataset, generate_separated_dataset
from coreset_kmeans.distributed.arena import SharedArena
from coreset_kmeans.distributed.comm import SCRATCH, LocalCommunicator, scratch_width


@pytest.fixture
def small_dataset():
    """Фикстура с небольшим тестовым датасетом (2D, 2 кластера)."""
    np.random.seed(42)
    # Два явно разделённых кластера
    cluster1 = np.random.randn(30, 2) + [0, 0]
    cluster2 = np.random.randn(30, 2) + [5, 5]
    X = np.vstack([cluster1, cluster2])
    initial_centroids = np.array([
        [-1.0, -1.0],
        [6.0, 6.0],
    ])
    return X, initial_centroids


@pytest.fixture
def simple_2d_dataset():
    """Фикстура с очень простым 2D датасетом для базовых тестов."""
    X = np.array([
        [0.0, 0.0],
        [1.0, 1.0],
        [2.0, 2.0],
        [10.0, 10.0],
        [11.0, 11.0],
        [12.0, 12.0],
    ])
    initial_centroids = np.array([
        [0.5, 0.5],
        [11.0, 11.0],
    ])
    return X, initial_centroids


@pytest.fixture
def separated_dataset():
    """Два далеко разнесённых кластера около (0, 0) и (100, 100)."""
    return generate_separated_dataset(
        n_per_cluster=100,
        centers=np.array([[0.0, 0.0], [100.0, 100.0]]),
        spread=0.5,
        seed=7,
    )


@pytest.fixture
def blobs_dataset():
    """make_blobs: 600 точек, 3D, 4 кластера."""
    return generate_blobs_dataset(N=600, D=3, K=4, cluster_std=0.8, seed=42)


class LocalGroup:
    """Окна одного процесса для прямых тестов алгоритмов."""

    def __init__(self, X: np.ndarray, n_clusters: int, weights: np.ndarray | None = None) -> None:
        N, F = X.shape
        K = n_clusters
        self.arena = SharedArena(n_workers=1)
        self.arena.allocate("data", (N, F))
        self.arena.allocate(SCRATCH, (1, scratch_width(1, F, K)))
        self.arena.allocate("weights", (N,))
        self.arena.allocate("centroids", (K, F))
        self.arena.allocate("counts", (K,), "int64")
        self.arena.allocate("partials", (1, partials_width(K, F)))
        self.arena.allocate("assignment", (N,), "int64")

        self.arena.view("data")[:] = X
        self.arena.view("weights")[:] = 1.0 if weights is None else weights
        self.arena.view("assignment")[:] = -1

        self.comm = LocalCommunicator(self.arena)
        self.data = self.comm.window("data")
        self.weights = self.comm.window("weights")
        self.centroids = self.comm.window("centroids")
        self.counts = self.comm.window("counts")
        self.partials = self.comm.window("partials", Layout([1]))
        self.assignment = self.comm.window("assignment")

    def coreset_windows(self, size: int):
        """Окна под coreset размера size (точки и веса)."""
        F = self.data.shape[1]
        self.arena.allocate(f"coreset_points_{size}", (size, F))
        self.arena.allocate(f"coreset_weights_{size}", (size,))
        return (
            self.comm.window(f"coreset_points_{size}"),
            self.comm.window(f"coreset_weights_{size}"),
        )

    def set_centroids(self, C: np.ndarray) -> None:
        self.centroids.set(slice(None), C)
        self.centroids.fence()


@pytest.fixture
def local_group():
    """Фабрика LocalGroup(X, K, weights=None)."""
    groups = []

    def factory(X, n_clusters, weights=None):
        group = LocalGroup(np.asarray(X, dtype=np.float64), n_clusters, weights)
        groups.append(group)
        return group

    yield factory
    for group in groups:
        group.arena.close()
