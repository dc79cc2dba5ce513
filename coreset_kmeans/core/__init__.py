from .coreset import Coreset, CoresetSampler
from .distance import (
    CallableDistance,
    DistanceMetric,
    EuclideanDistance,
    ManhattanDistance,
    resolve_metric,
)
from .lloyd import LloydEngine, RestartOutcome
from .partition import Layout, Partition
from .sampling import weighted_random_sample, weighted_random_selection
from .seeding import KMeansPlusPlusSeeder
from .selection import BestResultSelector, Candidate, global_best

__all__ = [
    "Coreset",
    "CoresetSampler",
    "CallableDistance",
    "DistanceMetric",
    "EuclideanDistance",
    "ManhattanDistance",
    "resolve_metric",
    "LloydEngine",
    "RestartOutcome",
    "Layout",
    "Partition",
    "weighted_random_sample",
    "weighted_random_selection",
    "KMeansPlusPlusSeeder",
    "BestResultSelector",
    "Candidate",
    "global_best",
]
