from .timers import PhaseTimings, Timer

__all__ = [
    "PhaseTimings",
    "Timer",
]
