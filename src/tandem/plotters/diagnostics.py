from pathlib import Path
import logging

import numpy as np
from matplotlib.figure import Figure

from tandem.model.model import DynamicImport
from tandem.model.control import ControlTrial
from tandem.trials.trials import DecodedSession
from tandem.alignment.matcher import MatchResult
from tandem.alignment.drift import DriftResult


class DiagnosticPlotter(DynamicImport):
    """Abstract interface for objects that draw one diagnostic figure for a processed session."""

    file_suffix = "diagnostic"
    """Suffix for the figure file name, like "<session>_<suffix>.png"."""

    def plot(
        self,
        fig: Figure,
        session_name: str,
        decoded: DecodedSession,
        control_trials: list[ControlTrial],
        match: MatchResult,
        drift: DriftResult
    ) -> bool:
        """Draw into the given fig, or return False if there's nothing to show for this session."""
        raise NotImplementedError  # pragma: no cover


class TrialCountAlignmentPlotter(DiagnosticPlotter):
    """Show hardware trial counts and which control trial each hardware trial was matched to."""

    file_suffix = "trial_count_alignment"

    def __init__(self, trial_count_name: str = "trialCount") -> None:
        self.trial_count_name = trial_count_name

    def plot(
        self,
        fig: Figure,
        session_name: str,
        decoded: DecodedSession,
        control_trials: list[ControlTrial],
        match: MatchResult,
        drift: DriftResult
    ) -> bool:
        if decoded is None or match is None:
            return False

        hardware_indices = np.arange(decoded.trial_count())
        counts_axes = fig.add_subplot(2, 1, 1)
        if self.trial_count_name in decoded.trial_info:
            counts_axes.plot(hardware_indices, decoded.trial_info[self.trial_count_name], '.', label="hardware")
        counts_axes.set_ylabel(self.trial_count_name)
        counts_axes.set_title(f"{session_name}: {match.matched_count()} of {decoded.trial_count()} trials matched")

        matched = np.array([index is not None for index in match.correspondence], dtype=bool)
        control_indices = np.array(
            [np.nan if index is None else index for index in match.correspondence],
            dtype=float
        )
        match_axes = fig.add_subplot(2, 1, 2, sharex=counts_axes)
        match_axes.plot(hardware_indices[matched], control_indices[matched], '.', label="matched")
        match_axes.plot(
            match.anchor_hardware_index,
            match.anchor_control_index,
            'r*',
            markersize=12,
            label=f"anchor ({match.anchor_method})"
        )
        match_axes.set_xlabel("hardware trial")
        match_axes.set_ylabel(f"control trial (of {len(control_trials)})")
        match_axes.legend(loc="best")
        return True


class DriftFitPlotter(DiagnosticPlotter):
    """Show reference (control, hardware) time pairs with the fitted clock mapping, and the fit residuals."""

    file_suffix = "drift_fit"

    def plot(
        self,
        fig: Figure,
        session_name: str,
        decoded: DecodedSession,
        control_trials: list[ControlTrial],
        match: MatchResult,
        drift: DriftResult
    ) -> bool:
        if drift is None or drift.model is None:
            return False

        x = drift.reference_control_times
        y = drift.reference_hardware_times
        fit_axes = fig.add_subplot(2, 1, 1)
        fit_axes.scatter(x, y, s=8, label="reference trials")
        line_x = np.array([x.min(), x.max()])
        fit_axes.plot(line_x, drift.model.predict(line_x), 'r-', label="linear fit")
        fit_axes.set_ylabel("hardware time (s)")
        fit_axes.set_title(
            f"{session_name}: slope {drift.model.slope:.9f}, max residual {drift.max_residual:.6f} s")
        fit_axes.legend(loc="best")

        residual_axes = fig.add_subplot(2, 1, 2, sharex=fit_axes)
        residual_axes.plot(x, drift.model.residuals(x, y), '.')
        residual_axes.axhline(0.0, color='gray')
        residual_axes.set_xlabel("control time (s)")
        residual_axes.set_ylabel("residual (s)")
        return True


class DiagnosticsWriter():
    """Draw each diagnostic plotter's figure for a session and save it to a directory."""

    def __init__(self, plotters: list[DiagnosticPlotter] = None, file_format: str = "png") -> None:
        if plotters is None:
            plotters = [TrialCountAlignmentPlotter(), DriftFitPlotter()]
        self.plotters = plotters
        self.file_format = file_format

    def write(
        self,
        directory: str,
        session_name: str,
        decoded: DecodedSession,
        control_trials: list[ControlTrial],
        match: MatchResult,
        drift: DriftResult
    ) -> list[str]:
        """Return the names of figure files written."""
        Path(directory).mkdir(parents=True, exist_ok=True)
        written = []
        for plotter in self.plotters:
            fig = Figure(figsize=(8, 6))
            if not plotter.plot(fig, session_name, decoded, control_trials, match, drift):
                logging.info(f"Nothing to plot for {plotter.__class__.__name__} in session {session_name}.")
                continue

            file_name = Path(directory, f"{session_name}_{plotter.file_suffix}.{self.file_format}").as_posix()
            fig.savefig(file_name)
            written.append(file_name)
            logging.info(f"Wrote diagnostic figure {file_name}")
        return written
