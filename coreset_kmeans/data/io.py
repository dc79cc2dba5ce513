"""
Чтение точек из текстового файла и запись результатов кластеризации.

Формат файла с точками:
- строки, начинающиеся с #, — комментарии (первая может содержать JSON с метаданными);
- каждая остальная строка — одна точка: [метка] + координаты через пробел.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

import numpy as np

from coreset_kmeans.errors import PreconditionError
from coreset_kmeans.result import ClusteringResult


class Dataset:
    """
    Набор точек, загруженный из текстового файла.

    Если заданы n_points/n_features, размеры проверяются после загрузки.
    """

    def __init__(
        self,
        path: str | Path,
        n_points: int | None = None,
        n_features: int | None = None,
        labeled: bool = False,
    ) -> None:
        """
        Args:
            path: Путь к файлу
            n_points: Ожидаемое число точек (проверка)
            n_features: Ожидаемое число признаков (проверка)
            labeled: Первый столбец каждой строки — истинная метка
        """
        self.path = Path(path)
        self.labeled = labeled
        self.metadata: dict[str, Any] = {}
        self.X: np.ndarray | None = None
        self.labels_true: np.ndarray | None = None

        logging.getLogger("coreset_kmeans").info(f"Loading dataset from {self.path}")
        self._load_data()
        self._validate(n_points, n_features)

    def _load_data(self) -> None:
        rows: list[list[float]] = []
        labels: list[int] = []

        with open(self.path, "r", encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                if line.startswith("#"):
                    # метаданные в JSON допускаются только до первой точки
                    if not rows and not self.metadata:
                        self._parse_metadata(line[1:].strip())
                    continue

                parts = line.split()
                if self.labeled:
                    labels.append(int(float(parts[0])))
                    parts = parts[1:]
                rows.append([float(v) for v in parts])

        widths = {len(r) for r in rows}
        if len(widths) > 1:
            raise PreconditionError(
                "feature_dimension", f"rows of {self.path} have different lengths: {sorted(widths)}"
            )

        self.X = np.array(rows, dtype=np.float64).reshape(len(rows), widths.pop() if widths else 0)
        if self.labeled:
            self.labels_true = np.array(labels, dtype=np.int64)

    def _parse_metadata(self, text: str) -> None:
        try:
            meta = json.loads(text)
        except json.JSONDecodeError:
            return
        if isinstance(meta, dict):
            self.metadata = meta

    def _validate(self, n_points: int | None, n_features: int | None) -> None:
        assert self.X is not None
        if n_points is not None and self.X.shape[0] != n_points:
            raise PreconditionError(
                "dataset_shape", f"Expected {n_points} points, got {self.X.shape[0]}"
            )
        if n_features is not None and self.X.shape[1] != n_features:
            raise PreconditionError(
                "feature_dimension", f"Expected {n_features} dimensions, got {self.X.shape[1]}"
            )

    @property
    def n_points(self) -> int:
        return int(self.X.shape[0])

    @property
    def n_features(self) -> int:
        return int(self.X.shape[1])


def save_points(path: str | Path, X: np.ndarray, labels: np.ndarray | None = None,
                metadata: dict[str, Any] | None = None) -> Path:
    """Записывает точки в формате, который читает Dataset."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        if metadata:
            f.write("# " + json.dumps(metadata, ensure_ascii=False) + "\n")
        for i, row in enumerate(np.asarray(X, dtype=np.float64)):
            values = " ".join(repr(float(v)) for v in row)
            if labels is not None:
                f.write(f"{int(labels[i])} {values}\n")
            else:
                f.write(values + "\n")
    return path


class ResultWriter:
    """Запись центроидов и назначений в текстовые файлы."""

    def __init__(self, result: ClusteringResult) -> None:
        self.result = result

    def write_clusters(self, path: str | Path) -> Path:
        """Центроиды: заголовок с метаданными, затем строка «метка + координаты» на кластер."""
        meta = {
            "K": self.result.n_clusters,
            "D": int(self.result.centroids.shape[1]),
            "error": self.result.error,
            "dataset_error": self.result.dataset_error,
            "counts": [int(c) for c in self.result.counts],
        }
        labels = np.arange(self.result.n_clusters)
        return save_points(path, self.result.centroids, labels=labels, metadata=meta)

    def write_clustering(self, path: str | Path) -> Path:
        """Назначения: один номер кластера на строку, в порядке точек."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        np.savetxt(path, self.result.labels, fmt="%d")
        return path
