"""
Генерация синтетических датасетов (make_blobs) для тестов и экспериментов.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
from sklearn.datasets import make_blobs
from sklearn.preprocessing import StandardScaler


@dataclass
class GeneratedDataset:
    """Контейнер для сгенерированных данных."""

    data: np.ndarray
    labels: np.ndarray
    centers: np.ndarray


def generate_blobs_dataset(
    N: int,
    D: int,
    K: int,
    cluster_std: float = 1.0,
    seed: int = 42,
    normalize: bool = False,
    center_box: tuple[float, float] = (-10.0, 10.0),
) -> GeneratedDataset:
    """
    Генерация кластеризованных данных с помощью make_blobs.

    Args:
        N: Количество точек
        D: Размерность пространства
        K: Количество кластеров
        cluster_std: Стандартное отклонение кластеров
        seed: Seed генератора
        normalize: Стандартизовать признаки (StandardScaler)
        center_box: Границы, в которых выбираются центры

    Returns:
        GeneratedDataset с данными (N, D), метками (N,) и центрами (K, D)
    """
    data, labels, centers = make_blobs(
        n_samples=N,
        n_features=D,
        centers=K,
        cluster_std=cluster_std,
        center_box=center_box,
        random_state=seed,
        return_centers=True,
    )

    if normalize:
        scaler = StandardScaler()
        data = scaler.fit_transform(data)
        centers = scaler.transform(centers)

    return GeneratedDataset(
        data=np.ascontiguousarray(data, dtype=np.float64),
        labels=labels.astype(np.int64),
        centers=np.asarray(centers, dtype=np.float64),
    )


def generate_separated_dataset(
    n_per_cluster: int,
    centers: np.ndarray,
    spread: float = 1.0,
    seed: int = 42,
) -> GeneratedDataset:
    """Хорошо разделённые кластеры вокруг заданных центров (например, (0,0) и (100,100))."""
    centers = np.asarray(centers, dtype=np.float64)
    rng = np.random.default_rng(seed)
    blocks = [c + spread * rng.standard_normal((n_per_cluster, centers.shape[1])) for c in centers]
    labels = np.repeat(np.arange(centers.shape[0]), n_per_cluster)
    return GeneratedDataset(data=np.vstack(blocks), labels=labels.astype(np.int64), centers=centers)
