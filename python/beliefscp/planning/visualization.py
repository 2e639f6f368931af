"""
Telemetry sinks that receive trajectories accepted by the optimizer.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Protocol

from .trajectory import Trajectory


class Visualizer(Protocol):
    """Anything with a ``show(trajectory, **info)`` method."""

    def show(self, trajectory: Trajectory, **info: Any) -> None:
        ...


class NullVisualizer:
    """Discards everything."""

    def show(self, trajectory: Trajectory, **info: Any) -> None:
        pass


@dataclass
class HistoryRecorder:
    """
    Keeps every trajectory it is shown together with its info.

    Example:
        >>> recorder = HistoryRecorder()
        >>> optimizer = BeliefSpaceOptimizer(problem, visualizer=recorder)
        >>> result = optimizer.solve()
        >>> merits = [info["merit"] for info in recorder.info]
    """
    trajectories: List[Trajectory] = field(default_factory=list)
    info: List[Dict[str, Any]] = field(default_factory=list)

    def show(self, trajectory: Trajectory, **info: Any) -> None:
        self.trajectories.append(trajectory.copy())
        self.info.append(dict(info))

    @property
    def merits(self) -> List[float]:
        """Recorded merit values, in order."""
        return [i.get("merit") for i in self.info]

    def __len__(self) -> int:
        return len(self.trajectories)

    def clear(self) -> None:
        self.trajectories.clear()
        self.info.clear()
