from .arena import BufferSpec, SharedArena
from .comm import Communicator, LocalCommunicator, SharedMemoryCommunicator
from .launcher import JobOutput, run_job
from .window import SharedWindow
from .worker import ClusterWorker, JobSpec

__all__ = [
    "BufferSpec",
    "SharedArena",
    "Communicator",
    "LocalCommunicator",
    "SharedMemoryCommunicator",
    "JobOutput",
    "run_job",
    "SharedWindow",
    "ClusterWorker",
    "JobSpec",
]
