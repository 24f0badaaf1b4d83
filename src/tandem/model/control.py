from typing import Any, Self
from dataclasses import dataclass, field

import numpy as np


@dataclass
class ControlTrial():
    """One trial as recorded by the task control software, on its own clock."""

    strobes: list[float]
    """Every value the control software strobed during the trial, in order."""

    trial_count: int = None
    """The control software's own running trial counter, if recorded."""

    variables: dict[str, Any] = field(default_factory=dict)
    """Named trial variables and results, like "targetTheta" or "rewardDuration"."""

    timing: dict[str, Any] = field(default_factory=dict)
    """Trial-relative event times in seconds on the control clock, plus the trial start time itself."""

    source: str = None
    """Name of the file or other source this trial came from."""

    def to_interop(self) -> dict[str, Any]:
        interop = {"strobes": list(self.strobes)}
        if self.trial_count is not None:
            interop["trial_count"] = self.trial_count
        if self.variables:
            interop["variables"] = self.variables
        if self.timing:
            interop["timing"] = self.timing
        return interop

    @classmethod
    def from_interop(cls, interop: dict[str, Any], source: str = None) -> Self:
        return cls(
            strobes=list(interop.get("strobes", [])),
            trial_count=interop.get("trial_count", None),
            variables=dict(interop.get("variables", {})),
            timing=dict(interop.get("timing", {})),
            source=source
        )

    def strobe_array(self) -> np.ndarray:
        return np.asarray(self.strobes, dtype=float).reshape(-1)

    def value_after(self, code: float) -> float | None:
        """Find the value strobed right after the first occurrence of the given code, if any."""
        strobes = self.strobe_array()
        hits = np.flatnonzero(strobes[:-1] == code)
        if hits.size == 0:
            return None
        return float(strobes[hits[0] + 1])


def union_control_fields(trials: list[ControlTrial]) -> list[ControlTrial]:
    """Give every trial the same variable and timing names, using None where a trial had no value.

    This is for trials merged from several sources that may have been written by different task versions.
    The first pass collects all names, the second pass fills in each trial.
    """
    variable_names = {}
    timing_names = {}
    for trial in trials:
        variable_names.update(dict.fromkeys(trial.variables.keys()))
        timing_names.update(dict.fromkeys(trial.timing.keys()))

    unioned = []
    for trial in trials:
        unioned.append(
            ControlTrial(
                strobes=trial.strobes,
                trial_count=trial.trial_count,
                variables={name: trial.variables.get(name, None) for name in variable_names},
                timing={name: trial.timing.get(name, None) for name in timing_names},
                source=trial.source
            )
        )
    return unioned
