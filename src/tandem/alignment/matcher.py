from typing import Any, Self
from dataclasses import dataclass
import logging
import math

import numpy as np

from tandem.errors import AlignmentFailure
from tandem.model.codes import StrobeCodeRegistry
from tandem.model.control import ControlTrial
from tandem.trials.trials import DecodedSession
from tandem.alignment.lcs import lcs_length


def restrict_strobes(values, value_range: tuple[float, float]) -> tuple[float, ...]:
    """Keep only strobe values in the half open range [min, max), as a hashable tuple.

    Large payload values can't survive the trip through the hardware strobe lines intact,
    so comparing them would spoil otherwise exact matches.
    """
    (low, high) = value_range
    values = np.asarray(values, dtype=float).reshape(-1)
    kept = values[(values >= low) & (values < high)]
    return tuple(kept.tolist())


@dataclass
class MatchResult():
    """Correspondence from hardware trial index to control trial index, and how it was found."""

    correspondence: list[int | None]
    """For each hardware trial, the index of its matching control trial, or None."""

    anchor_hardware_index: int
    anchor_control_index: int

    anchor_method: str
    """How the anchor was found: "exact" or "lcs"."""

    stepped_count: int = 0
    """How many trials after the anchor were matched by trial count."""

    fallback_count: int = 0
    """How many trials were matched by exhaustive exact search."""

    def matched_count(self) -> int:
        return sum(1 for index in self.correspondence if index is not None)

    def to_interop(self) -> dict[str, Any]:
        return {
            "correspondence": list(self.correspondence),
            "anchor_hardware_index": self.anchor_hardware_index,
            "anchor_control_index": self.anchor_control_index,
            "anchor_method": self.anchor_method,
            "stepped_count": self.stepped_count,
            "fallback_count": self.fallback_count,
            "matched_count": self.matched_count(),
        }

    @classmethod
    def from_interop(cls, interop: dict[str, Any]) -> Self:
        return cls(
            correspondence=list(interop["correspondence"]),
            anchor_hardware_index=interop["anchor_hardware_index"],
            anchor_control_index=interop["anchor_control_index"],
            anchor_method=interop["anchor_method"],
            stepped_count=interop.get("stepped_count", 0),
            fallback_count=interop.get("fallback_count", 0)
        )


class TrialMatcher():
    """Match hardware trials to control software trials with an "anchor-and-step" protocol.

    Anchor: among the first anchor_search_trials hardware trials, find the first one whose strobes
    exactly equal those of one and only one control trial.  If there's no exact anchor, settle for the first
    hardware trial with a single best longest-common-subsequence match, among the control trials in a window.

    Step: after the anchor, match each hardware trial by its trial count, searching forward from the last matched
    control trial but only within the current run of control trials whose counts go up by exactly one.
    A count that doesn't go up by one means the control software was restarted.

    Fallback: any hardware trials still unmatched get an exhaustive exact strobe match against
    control trials not yet matched.
    """

    def __init__(
        self,
        registry: StrobeCodeRegistry,
        trial_count_name: str = "trialCount",
        anchor_search_trials: int = 100,
        lcs_window: int = 100,
        min_lcs_fraction: float = 0.5,
        value_range: tuple[float, float] = (0, 32768)
    ) -> None:
        self.registry = registry
        self.trial_count_name = trial_count_name
        self.anchor_search_trials = anchor_search_trials
        self.lcs_window = lcs_window
        self.min_lcs_fraction = min_lcs_fraction
        self.value_range = tuple(value_range)

    def control_trial_counts(self, control_trials: list[ControlTrial]) -> np.ndarray:
        """Each control trial's count, from its own record or else from its strobes, NaN if neither."""
        trial_count_code = self.registry.code_of(self.trial_count_name)
        counts = np.full(len(control_trials), np.nan)
        for index, control_trial in enumerate(control_trials):
            if control_trial.trial_count is not None:
                counts[index] = control_trial.trial_count
            else:
                value = control_trial.value_after(trial_count_code)
                if value is not None:
                    counts[index] = value
        return counts

    @staticmethod
    def monotonic_block_ends(counts: np.ndarray) -> np.ndarray:
        """For each control trial, the index of the last trial in its run of counts increasing by exactly one."""
        block_ends = np.arange(counts.size)
        for index in range(counts.size - 2, -1, -1):
            if counts[index + 1] == counts[index] + 1:
                block_ends[index] = block_ends[index + 1]
        return block_ends

    def find_exact_anchor(
        self,
        hardware_sequences: list[tuple],
        control_sequences: list[tuple]
    ) -> tuple[int, int] | None:
        search_count = min(self.anchor_search_trials, len(hardware_sequences))
        for hardware_index in range(search_count):
            sequence = hardware_sequences[hardware_index]
            if not sequence:
                continue
            matches = [index for index, control in enumerate(control_sequences) if control == sequence]
            if len(matches) == 1:
                return (hardware_index, matches[0])
        return None

    def find_lcs_anchor(
        self,
        hardware_sequences: list[tuple],
        control_sequences: list[tuple]
    ) -> tuple[int, int] | None:
        search_count = min(self.anchor_search_trials, len(hardware_sequences))
        for hardware_index in range(search_count):
            sequence = hardware_sequences[hardware_index]
            if not sequence:
                continue
            window_end = min(len(control_sequences), hardware_index + self.lcs_window)
            scores = [lcs_length(sequence, control_sequences[index]) for index in range(window_end)]
            if not scores:
                continue
            best = max(scores)
            if best <= 0 or best < self.min_lcs_fraction * len(sequence):
                continue
            winners = [index for index, score in enumerate(scores) if score == best]
            if len(winners) == 1:
                return (hardware_index, winners[0])
        return None

    def match(
        self,
        hardware_strobes: list,
        hardware_trial_counts,
        control_trials: list[ControlTrial]
    ) -> MatchResult:
        """Match hardware trials, given as per-trial strobe values and trial counts, to control trials.

        hardware_trial_counts may contain NaN for trials without a trial count.
        Raises AlignmentFailure if no anchor can be found.
        """
        hardware_sequences = [restrict_strobes(values, self.value_range) for values in hardware_strobes]
        control_sequences = [restrict_strobes(trial.strobes, self.value_range) for trial in control_trials]
        hardware_counts = np.asarray(hardware_trial_counts, dtype=float).reshape(-1)
        correspondence = [None] * len(hardware_sequences)
        consumed = set()

        # Anchor.
        anchor_method = "exact"
        anchor = self.find_exact_anchor(hardware_sequences, control_sequences)
        if anchor is None:
            anchor_method = "lcs"
            anchor = self.find_lcs_anchor(hardware_sequences, control_sequences)
        if anchor is None:
            raise AlignmentFailure(
                f"No anchor found among the first {self.anchor_search_trials} of {len(hardware_sequences)} hardware trials"
                + f" and {len(control_trials)} control trials.")

        (anchor_hardware, anchor_control) = anchor
        correspondence[anchor_hardware] = anchor_control
        consumed.add(anchor_control)
        logging.info(f"Anchor match found ({anchor_method}): hardware trial {anchor_hardware} -> control trial {anchor_control}")

        # Step by trial count, within monotonic blocks of control trials.
        control_counts = self.control_trial_counts(control_trials)
        block_ends = self.monotonic_block_ends(control_counts)
        stepped_count = 0
        last_control = anchor_control
        for hardware_index in range(anchor_hardware + 1, len(hardware_sequences)):
            if hardware_index >= hardware_counts.size:
                break
            target_count = hardware_counts[hardware_index]
            if math.isnan(target_count):
                continue

            search_start = last_control + 1
            if search_start >= len(control_trials):
                break

            for control_index in range(search_start, block_ends[search_start] + 1):
                if control_index not in consumed and control_counts[control_index] == target_count:
                    correspondence[hardware_index] = control_index
                    consumed.add(control_index)
                    last_control = control_index
                    stepped_count += 1
                    break

        # Exhaustive exact matching for whatever is left.
        by_sequence = {}
        for control_index, sequence in enumerate(control_sequences):
            by_sequence.setdefault(sequence, []).append(control_index)

        fallback_count = 0
        for hardware_index, sequence in enumerate(hardware_sequences):
            if correspondence[hardware_index] is not None or not sequence:
                continue
            candidates = [index for index in by_sequence.get(sequence, []) if index not in consumed]
            if not candidates:
                continue

            if len(candidates) == 1:
                choice = candidates[0]
            else:
                previous = self.previous_match(correspondence, hardware_index)
                later = [index for index in candidates if index > previous]
                choice = later[0] if later else None

            if choice is not None:
                correspondence[hardware_index] = choice
                consumed.add(choice)
                fallback_count += 1

        result = MatchResult(
            correspondence=correspondence,
            anchor_hardware_index=anchor_hardware,
            anchor_control_index=anchor_control,
            anchor_method=anchor_method,
            stepped_count=stepped_count,
            fallback_count=fallback_count
        )
        logging.info(
            f"Found {result.matched_count()} matched control trials out of {len(hardware_sequences)} hardware trials"
            + f" ({stepped_count} by trial count, {fallback_count} by fallback).")
        return result

    @staticmethod
    def previous_match(correspondence: list[int | None], hardware_index: int) -> int:
        """Control index matched to the nearest earlier hardware trial, or -1 if none."""
        for index in range(hardware_index - 1, -1, -1):
            if correspondence[index] is not None:
                return correspondence[index]
        return -1

    def match_decoded(self, decoded: DecodedSession, control_trials: list[ControlTrial]) -> MatchResult:
        """Match trials from a decoded hardware session, using its trial info for hardware trial counts."""
        hardware_strobes = [trial.get_values() for trial in decoded.trials]
        if self.trial_count_name in decoded.trial_info:
            hardware_counts = decoded.trial_info[self.trial_count_name]
        else:
            logging.warning(f"Hardware trials have no {self.trial_count_name}, matching will rely on strobes alone.")
            hardware_counts = np.full(len(decoded.trials), np.nan)
        return self.match(hardware_strobes, hardware_counts, control_trials)
