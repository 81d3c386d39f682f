"""Process execution primitives."""

from .process import WatchedProcess
from .runner import CommandRunner
from .watch import ProcessWatch, WatchState

__all__ = ["CommandRunner", "ProcessWatch", "WatchState", "WatchedProcess"]
