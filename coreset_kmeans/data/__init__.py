from .io import Dataset, ResultWriter, save_points
from .synthetic import GeneratedDataset, generate_blobs_dataset, generate_separated_dataset

__all__ = [
    "Dataset",
    "ResultWriter",
    "save_points",
    "GeneratedDataset",
    "generate_blobs_dataset",
    "generate_separated_dataset",
]
