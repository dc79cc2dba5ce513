from .config import ClusteringConfig
from .core.coreset import Coreset
from .core.distance import (
    CallableDistance,
    DistanceMetric,
    EuclideanDistance,
    ManhattanDistance,
)
from .errors import (
    ConfigurationError,
    CoordinationError,
    CoresetKMeansError,
    PreconditionError,
    WindowAccessError,
)
from .estimator import CoresetKMeans
from .result import ClusteringResult

__all__ = [
    "ClusteringConfig",
    "Coreset",
    "CallableDistance",
    "DistanceMetric",
    "EuclideanDistance",
    "ManhattanDistance",
    "ConfigurationError",
    "CoordinationError",
    "CoresetKMeansError",
    "PreconditionError",
    "WindowAccessError",
    "CoresetKMeans",
    "ClusteringResult",
]
