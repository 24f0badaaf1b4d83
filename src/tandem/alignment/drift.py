from typing import Any, Self
from dataclasses import dataclass, field
import logging

import numpy as np

from tandem.errors import DriftFitUnreliable
from tandem.model.codes import StrobeCodeRegistry
from tandem.model.control import ControlTrial
from tandem.model.tables import TrialTable, is_null, is_scalar_number


@dataclass
class DriftModel():
    """Linear mapping from control clock times to hardware clock times.

    The fit is done on centered and scaled control times, z = (control - center) / scale,
    which keeps the fit well conditioned for large clock values like seconds since boot.
    """

    coefficients: np.ndarray
    """Polynomial coefficients [a, b] so that hardware = a * z + b."""

    center: float = 0.0
    scale: float = 1.0

    def __eq__(self, other: object) -> bool:
        """Compare models field-wise, to support use of this class in tests."""
        if isinstance(other, self.__class__):
            return (
                np.array_equal(self.coefficients, other.coefficients)
                and self.center == other.center
                and self.scale == other.scale
            )
        else:  # pragma: no cover
            return False

    @classmethod
    def fit(cls, control_times, hardware_times) -> Self:
        x = np.asarray(control_times, dtype=float)
        y = np.asarray(hardware_times, dtype=float)
        center = float(x.mean())
        scale = float(x.std(ddof=1)) if x.size > 1 else 1.0
        if not scale > 0:
            scale = 1.0
        coefficients = np.polyfit((x - center) / scale, y, 1)
        return cls(coefficients, center, scale)

    def predict(self, control_times) -> np.ndarray:
        z = (np.asarray(control_times, dtype=float) - self.center) / self.scale
        return np.polyval(self.coefficients, z)

    def residuals(self, control_times, hardware_times) -> np.ndarray:
        return np.asarray(hardware_times, dtype=float) - self.predict(control_times)

    @property
    def slope(self) -> float:
        """Hardware seconds per control second."""
        return float(self.coefficients[0] / self.scale)

    @property
    def intercept(self) -> float:
        """Hardware time at control time zero."""
        return float(self.coefficients[1] - self.slope * self.center)

    def to_interop(self) -> dict[str, Any]:
        return {
            "coefficients": self.coefficients.tolist(),
            "center": self.center,
            "scale": self.scale,
            "slope": self.slope,
            "intercept": self.intercept,
        }

    @classmethod
    def from_interop(cls, interop: dict[str, Any]) -> Self:
        return cls(
            coefficients=np.array(interop["coefficients"], dtype=float),
            center=interop.get("center", 0.0),
            scale=interop.get("scale", 1.0)
        )


@dataclass
class CorrectionRule():
    """Which trials have unreliable hardware event times, and how to rebuild them from control times."""

    name: str
    """Name for the rule, for logging."""

    tasks: list[str]
    """Registry names of task codes the rule applies to, matched against the trial info task column."""

    events: dict[str, str] = field(default_factory=dict)
    """Map from event times column to the control timing field to rebuild it from."""

    null_events: list[str] = field(default_factory=list)
    """Event times columns to blank out entirely for these trials."""

    create_missing: bool = False
    """Whether to create event times columns that don't exist yet, or skip them."""

    exclude_from_reference: bool = True
    """Whether these trials are left out of the drift fit, because their hardware times are suspect."""

    @classmethod
    def from_dict(cls, name: str, rule_config: dict[str, Any]) -> Self:
        tasks = rule_config.get("tasks", [])
        if isinstance(tasks, str):
            tasks = [tasks]
        return cls(
            name=name,
            tasks=list(tasks),
            events=dict(rule_config.get("events", {})),
            null_events=list(rule_config.get("null_events", [])),
            create_missing=bool(rule_config.get("create_missing", False)),
            exclude_from_reference=bool(rule_config.get("exclude_from_reference", True))
        )


def default_correction_rules() -> list[CorrectionRule]:
    """Rules for the lab's known legacy tasks."""
    gsac_4factors = CorrectionRule(
        name="gSac_4factors",
        tasks=["uniqueTaskCode_gSac_4factors"],
        events={
            "CUE_ON": "cueOn",
            "fixAq": "fixAq",
            "fixBreak": "brokeFix",
            "fixOff": "fixOff",
            "fixOn": "fixOn",
            "joyPress": "joyPress",
            "lowTone": "tone",
            "reward": "reward",
            "REWARD_GIVEN": "reward",
            "saccadeOffset": "saccadeOffset",
            "saccadeOnset": "saccadeOnset",
            "targetAq": "targetAq",
            "targetOff": "targetOff",
            "targetOn": "targetOn",
            "targetReillum": "targetReillum",
            "trialEnd": "trialEnd",
            "TRIAL_END": "trialEnd",
            "trialBegin": "trialBegin",
        },
        null_events=["nonStart", "blinkDuringSac"],
    )
    tokens = CorrectionRule(
        name="tokens",
        tasks=["uniqueTaskCode_tokens"],
        events={"outcomeOn": "outcomeOn"},
        create_missing=True,
        exclude_from_reference=False
    )
    return [gsac_4factors, tokens]


@dataclass
class DriftResult():
    """What happened during drift correction for one session."""

    model: DriftModel = None
    n_reference: int = 0
    n_outliers: int = 0
    max_residual: float = None
    low_confidence: bool = False
    corrected_trials: int = 0
    skipped_reason: str = None

    problem: DriftFitUnreliable = None
    """Set when the fit should be treated with suspicion: too few reference points, or high residuals."""

    reference_control_times: np.ndarray = field(default_factory=lambda: np.empty([0]))
    reference_hardware_times: np.ndarray = field(default_factory=lambda: np.empty([0]))

    def to_interop(self) -> dict[str, Any]:
        return {
            "model": self.model.to_interop() if self.model is not None else None,
            "n_reference": self.n_reference,
            "n_outliers": self.n_outliers,
            "max_residual": self.max_residual,
            "low_confidence": self.low_confidence,
            "corrected_trials": self.corrected_trials,
            "skipped_reason": self.skipped_reason,
            "problem": str(self.problem) if self.problem is not None else None,
        }

    @classmethod
    def from_interop(cls, interop: dict[str, Any]) -> Self:
        """Recover the summary written by to_interop(), without the reference time pairs."""
        model = interop.get("model", None)
        problem = interop.get("problem", None)
        return cls(
            model=DriftModel.from_interop(model) if model is not None else None,
            n_reference=interop.get("n_reference", 0),
            n_outliers=interop.get("n_outliers", 0),
            max_residual=interop.get("max_residual", None),
            low_confidence=interop.get("low_confidence", False),
            corrected_trials=interop.get("corrected_trials", 0),
            skipped_reason=interop.get("skipped_reason", None),
            problem=DriftFitUnreliable(problem) if problem is not None else None
        )


class DriftCorrector():
    """Fit hardware vs control clock drift from reliable trials and use it to rebuild legacy trials' event times.

    Some legacy tasks strobed their events late or not at all, so their hardware event times can't be trusted.
    Their control software event times are fine, but on a different clock.
    Trials from other tasks give pairs of (control, hardware) times for the same moment,
    which are enough to fit a linear clock mapping, which can then carry the legacy trials' control times
    over to the hardware clock.
    """

    def __init__(
        self,
        registry: StrobeCodeRegistry,
        rules: list[CorrectionRule] = None,
        task_column: str = "taskCode",
        reference_hardware_event: str = "trialBegin",
        reference_control_event: str = None,
        control_start_field: str = "trialStartPTB",
        residual_tolerance: float = 0.001,
        outlier_sigma: float = 3.0
    ) -> None:
        self.registry = registry
        self.rules = rules if rules is not None else default_correction_rules()
        self.task_column = task_column
        self.reference_hardware_event = reference_hardware_event
        self.reference_control_event = reference_control_event
        self.control_start_field = control_start_field
        self.residual_tolerance = residual_tolerance
        self.outlier_sigma = outlier_sigma

        self.rule_task_values = []
        for rule in self.rules:
            values = set()
            for task in rule.tasks:
                if task in self.registry:
                    values.add(float(self.registry.code_of(task)))
                else:
                    logging.warning(f"Correction rule {rule.name} names task {task} which is not in the code registry.")
            self.rule_task_values.append(values)

    def rules_for_trial(self, trial_info: TrialTable, trial_index: int) -> list[CorrectionRule]:
        task_value = trial_info.get_value(self.task_column, trial_index)
        if not is_scalar_number(task_value):
            return []
        return [
            rule
            for rule, values in zip(self.rules, self.rule_task_values)
            if float(task_value) in values
        ]

    def control_start(self, control_trial: ControlTrial) -> float | None:
        start = control_trial.timing.get(self.control_start_field)
        if is_null(start) or not is_scalar_number(start):
            return None
        return float(start)

    def reference_pairs(
        self,
        correspondence: list[int | None],
        control_trials: list[ControlTrial],
        trial_info: TrialTable,
        event_times: TrialTable
    ) -> tuple[np.ndarray, np.ndarray]:
        """Collect (control, hardware) time pairs from matched trials that aren't excluded by any rule."""
        control_times = []
        hardware_times = []
        for hardware_index, control_index in enumerate(correspondence):
            if control_index is None:
                continue
            rules = self.rules_for_trial(trial_info, hardware_index)
            if any(rule.exclude_from_reference for rule in rules):
                continue

            control_trial = control_trials[control_index]
            start = self.control_start(control_trial)
            if start is None:
                continue

            if self.reference_control_event:
                relative = control_trial.timing.get(self.reference_control_event)
                if is_null(relative) or not is_scalar_number(relative):
                    continue
                control_time = start + float(relative)
            else:
                control_time = start

            hardware_time = event_times.get_value(self.reference_hardware_event, hardware_index)
            if hardware_time is None:
                continue

            control_times.append(control_time)
            hardware_times.append(float(hardware_time))
        return (np.array(control_times, dtype=float), np.array(hardware_times, dtype=float))

    def fit(self, control_times: np.ndarray, hardware_times: np.ndarray) -> tuple[DriftModel, np.ndarray]:
        """Fit the clock mapping, with one pass of outlier rejection; return the model and the inlier mask."""
        model = DriftModel.fit(control_times, hardware_times)
        inliers = np.ones(control_times.shape, dtype=bool)
        if self.outlier_sigma is None or self.outlier_sigma <= 0 or control_times.size < 3:
            return (model, inliers)

        residuals = model.residuals(control_times, hardware_times)
        sigma = residuals.std(ddof=1)
        outliers = (np.abs(residuals) > self.outlier_sigma * sigma) & (np.abs(residuals) > self.residual_tolerance)
        if outliers.any() and np.count_nonzero(~outliers) >= 2:
            logging.info(f"Removing {np.count_nonzero(outliers)} outlier(s) from the drift fit.")
            inliers = ~outliers
            model = DriftModel.fit(control_times[inliers], hardware_times[inliers])
        return (model, inliers)

    def correct(
        self,
        correspondence: list[int | None],
        control_trials: list[ControlTrial],
        trial_info: TrialTable,
        event_times: TrialTable
    ) -> DriftResult:
        """Fit the drift model and overwrite legacy trials' event times in place."""
        legacy = {}
        for hardware_index in range(len(correspondence)):
            rules = self.rules_for_trial(trial_info, hardware_index)
            if rules:
                legacy[hardware_index] = rules

        (control_times, hardware_times) = self.reference_pairs(correspondence, control_trials, trial_info, event_times)
        result = DriftResult(
            n_reference=control_times.size,
            reference_control_times=control_times,
            reference_hardware_times=hardware_times
        )

        if control_times.size < 2:
            if legacy:
                result.skipped_reason = f"Only {control_times.size} reference trial(s), need at least 2 to fit drift."
                result.problem = DriftFitUnreliable(result.skipped_reason)
                logging.warning(f"Skipping drift correction for {len(legacy)} legacy trials: {result.skipped_reason}")
            else:
                result.skipped_reason = "No legacy trials to correct."
                logging.info("No legacy trials and too few reference trials, skipping drift fit.")
            return result

        (model, inliers) = self.fit(control_times, hardware_times)
        result.model = model
        result.n_outliers = int(np.count_nonzero(~inliers))
        residuals = model.residuals(control_times[inliers], hardware_times[inliers])
        result.max_residual = float(np.abs(residuals).max())
        logging.info(
            f"Drift fit from {control_times.size} reference trials: slope {model.slope}, intercept {model.intercept},"
            + f" max residual {result.max_residual}.")

        if result.max_residual > self.residual_tolerance:
            result.low_confidence = True
            result.problem = DriftFitUnreliable(
                f"Max drift fit residual {result.max_residual} exceeds tolerance {self.residual_tolerance}.")
            logging.warning(f"Low confidence drift fit: {result.problem}")

        if result.n_outliers > 0:
            outlier_residuals = model.residuals(control_times[~inliers], hardware_times[~inliers])
            outlier_message = (f"Dropped {result.n_outliers} outlier reference trial(s) from the drift fit,"
                + f" largest residual {float(np.abs(outlier_residuals).max())} s.")
            if result.problem is None:
                result.problem = DriftFitUnreliable(outlier_message)
            else:
                result.problem = DriftFitUnreliable(f"{result.problem} {outlier_message}")
            logging.warning(outlier_message)

        if not legacy:
            result.skipped_reason = "No legacy trials to correct."
            logging.info(result.skipped_reason)
            return result

        result.corrected_trials = self.apply(model, legacy, correspondence, control_trials, event_times)
        logging.info(f"Drift correction applied to {result.corrected_trials} of {len(legacy)} legacy trials.")
        return result

    def apply(
        self,
        model: DriftModel,
        legacy: dict[int, list[CorrectionRule]],
        correspondence: list[int | None],
        control_trials: list[ControlTrial],
        event_times: TrialTable
    ) -> int:
        skipped_columns = set()
        corrected_trials = 0
        for hardware_index, rules in legacy.items():
            control_index = correspondence[hardware_index]
            if control_index is None:
                continue
            control_trial = control_trials[control_index]
            start = self.control_start(control_trial)
            if start is None:
                continue

            for rule in rules:
                for target, source in rule.events.items():
                    if target not in event_times and not rule.create_missing:
                        skipped_columns.add(target)
                        continue
                    relative = control_trial.timing.get(source)
                    if is_null(relative) or not is_scalar_number(relative):
                        if rule.create_missing:
                            event_times.add_column(target)
                        continue
                    corrected = model.predict(start + float(relative))
                    event_times.set_value(target, hardware_index, float(corrected))

                for target in rule.null_events:
                    if target in event_times:
                        event_times.set_value(target, hardware_index, None)
            corrected_trials += 1

        if skipped_columns:
            logging.debug(f"Drift correction skipped event times columns not in the table: {sorted(skipped_columns)}")
        return corrected_trials
