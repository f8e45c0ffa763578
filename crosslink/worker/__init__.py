"""Background workers for Crosslink."""

from .sweeper import Sweep, SweepWorker

__all__ = ["Sweep", "SweepWorker"]
