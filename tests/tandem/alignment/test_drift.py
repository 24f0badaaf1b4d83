import numpy as np
from pytest import fixture, approx

from tandem.errors import DriftFitUnreliable
from tandem.model.codes import StrobeCodeRegistry
from tandem.model.control import ControlTrial
from tandem.model.tables import TrialTable
from tandem.alignment.drift import DriftModel, DriftCorrector, DriftResult, CorrectionRule, default_correction_rules


slope = 1.00002
intercept = -400.0
legacy_task = 32015
tokens_task = 32014
other_task = 32002


@fixture
def registry():
    return StrobeCodeRegistry.from_csv()


@fixture
def corrector(registry):
    return DriftCorrector(registry)


def synthetic_session(task_codes: list[int], noise: dict[int, float] = {}):
    """Control trials and hardware tables where hardware time = slope * control time + intercept."""
    control_trials = []
    trial_count = len(task_codes)
    trial_info = TrialTable(trial_count, {"taskCode": np.array(task_codes, dtype=float)})
    event_times = TrialTable(trial_count)
    for index in range(trial_count):
        control_start = 1000.0 + 3.0 * index + 0.001 * index ** 2
        control_trials.append(
            ControlTrial(
                strobes=[],
                timing={"trialStartPTB": control_start, "fixOn": 0.25, "outcomeOn": 1.25}
            )
        )
        hardware_start = slope * control_start + intercept + noise.get(index, 0.0)
        event_times.set_value("trialBegin", index, hardware_start)

        # Legacy trials got their fixOn strobes late, at the end of the trial.
        if task_codes[index] == legacy_task:
            event_times.set_value("fixOn", index, hardware_start + 2.5)
        else:
            event_times.set_value("fixOn", index, slope * (control_start + 0.25) + intercept)
        event_times.set_value("nonStart", index, hardware_start + 0.5)

    correspondence = list(range(trial_count))
    return (correspondence, control_trials, trial_info, event_times)


def test_drift_model_recovers_line():
    x = np.array([10.0, 20.0, 35.0, 50.0, 1000.0])
    y = slope * x + intercept
    model = DriftModel.fit(x, y)
    assert model.slope == approx(slope)
    assert model.intercept == approx(intercept)
    assert np.allclose(model.residuals(x, y), 0.0, atol=1e-9)
    assert model.predict(500.0) == approx(slope * 500.0 + intercept)


def test_drift_model_large_clock_values():
    x = 1e6 + np.arange(50) * 2.5
    y = slope * x + intercept
    model = DriftModel.fit(x, y)
    assert model.slope == approx(slope, rel=1e-9)
    assert np.abs(model.residuals(x, y)).max() < 1e-6


def test_drift_model_interop():
    model = DriftModel.fit([1.0, 2.0, 3.0], [2.0, 4.0, 6.0])
    interop = model.to_interop()
    assert interop["slope"] == approx(2.0)
    assert interop["intercept"] == approx(0.0, abs=1e-12)
    assert DriftModel.from_interop(interop) == model


def test_correct_legacy_trials(corrector):
    task_codes = [other_task] * 10
    task_codes[3] = legacy_task
    task_codes[7] = legacy_task
    (correspondence, control_trials, trial_info, event_times) = synthetic_session(task_codes)

    result = corrector.correct(correspondence, control_trials, trial_info, event_times)
    assert result.problem is None
    assert not result.low_confidence
    assert result.n_reference == 8
    assert result.n_outliers == 0
    assert result.corrected_trials == 2
    assert result.max_residual < 1e-6
    assert result.model.slope == approx(slope)
    assert result.model.intercept == approx(intercept)

    for index in [3, 7]:
        control_start = control_trials[index].timing["trialStartPTB"]
        assert event_times.get_value("fixOn", index) == approx(slope * (control_start + 0.25) + intercept)

        # Unreliable events are blanked out.
        assert event_times.get_value("nonStart", index) is None

    # Other trials are untouched.
    assert event_times.get_value("nonStart", 0) is not None
    assert "targetOn" not in event_times


def test_tokens_trials_get_outcome_on(corrector):
    task_codes = [other_task, tokens_task, other_task, tokens_task, other_task]
    (correspondence, control_trials, trial_info, event_times) = synthetic_session(task_codes)

    result = corrector.correct(correspondence, control_trials, trial_info, event_times)

    # Tokens trials still count as reference trials.
    assert result.n_reference == 5
    assert result.corrected_trials == 2
    assert "outcomeOn" in event_times
    assert event_times.get_value("outcomeOn", 0) is None
    control_start = control_trials[1].timing["trialStartPTB"]
    assert event_times.get_value("outcomeOn", 1) == approx(slope * (control_start + 1.25) + intercept)


def test_unmatched_trials_are_skipped(corrector):
    task_codes = [other_task, other_task, legacy_task, other_task, legacy_task]
    (correspondence, control_trials, trial_info, event_times) = synthetic_session(task_codes)
    correspondence[4] = None
    original_fix_on = event_times.get_value("fixOn", 4)

    result = corrector.correct(correspondence, control_trials, trial_info, event_times)
    assert result.n_reference == 3
    assert result.corrected_trials == 1
    assert event_times.get_value("fixOn", 4) == original_fix_on


def test_too_few_reference_trials(corrector):
    task_codes = [legacy_task, other_task, legacy_task]
    (correspondence, control_trials, trial_info, event_times) = synthetic_session(task_codes)
    original = event_times.to_interop()

    result = corrector.correct(correspondence, control_trials, trial_info, event_times)
    assert result.model is None
    assert result.n_reference == 1
    assert isinstance(result.problem, DriftFitUnreliable)
    assert result.skipped_reason
    assert result.corrected_trials == 0
    assert event_times.to_interop() == original


def test_too_few_reference_trials_without_legacy(corrector):
    (correspondence, control_trials, trial_info, event_times) = synthetic_session([other_task])

    result = corrector.correct(correspondence, control_trials, trial_info, event_times)
    assert result.model is None
    assert result.problem is None
    assert result.skipped_reason


def test_no_legacy_trials_still_fits(corrector):
    (correspondence, control_trials, trial_info, event_times) = synthetic_session([other_task] * 4)

    result = corrector.correct(correspondence, control_trials, trial_info, event_times)
    assert result.model is not None
    assert result.problem is None
    assert result.corrected_trials == 0


def test_high_residual_is_low_confidence(corrector):
    task_codes = [other_task] * 6 + [legacy_task]
    noise = {0: 0.01, 1: -0.01, 2: 0.01, 3: -0.01, 4: 0.01, 5: -0.01}
    (correspondence, control_trials, trial_info, event_times) = synthetic_session(task_codes, noise)

    result = corrector.correct(correspondence, control_trials, trial_info, event_times)
    assert result.low_confidence
    assert isinstance(result.problem, DriftFitUnreliable)
    assert result.max_residual > corrector.residual_tolerance

    # The fit is still applied.
    assert result.corrected_trials == 1


def test_outlier_is_removed(corrector):
    task_codes = [other_task] * 30 + [legacy_task]
    (correspondence, control_trials, trial_info, event_times) = synthetic_session(task_codes, {10: 5.0})

    result = corrector.correct(correspondence, control_trials, trial_info, event_times)
    assert result.n_outliers == 1
    assert result.max_residual < 1e-6
    assert not result.low_confidence
    assert result.model.slope == approx(slope)

    # Dropped outliers are reported as a problem.
    assert isinstance(result.problem, DriftFitUnreliable)
    assert "1 outlier" in str(result.problem)
    assert "largest residual" in str(result.problem)


def test_reference_control_event(registry):
    corrector = DriftCorrector(
        registry,
        reference_hardware_event="fixOn",
        reference_control_event="fixOn"
    )
    task_codes = [other_task] * 5 + [legacy_task]
    (correspondence, control_trials, trial_info, event_times) = synthetic_session(task_codes)

    result = corrector.correct(correspondence, control_trials, trial_info, event_times)
    assert result.n_reference == 5
    assert result.model.slope == approx(slope)
    assert result.max_residual < 1e-6


def test_custom_rules(registry):
    rule = CorrectionRule(
        name="gSac",
        tasks=["uniqueTaskCode_gSac"],
        events={"fixOn": "fixOn"},
        null_events=["nonStart"]
    )
    corrector = DriftCorrector(registry, rules=[rule])
    task_codes = [legacy_task] * 3 + [other_task]
    (correspondence, control_trials, trial_info, event_times) = synthetic_session(task_codes)

    # Now 32015 trials are reference trials and the 32002 trial is legacy.
    result = corrector.correct(correspondence, control_trials, trial_info, event_times)
    assert result.n_reference == 3
    assert result.corrected_trials == 1
    assert event_times.get_value("nonStart", 3) is None


def test_correction_rule_from_dict():
    rule = CorrectionRule.from_dict("tokens", {"tasks": "uniqueTaskCode_tokens", "events": {"outcomeOn": "outcomeOn"}})
    assert rule == CorrectionRule(name="tokens", tasks=["uniqueTaskCode_tokens"], events={"outcomeOn": "outcomeOn"})


def test_default_rules():
    rules = {rule.name: rule for rule in default_correction_rules()}
    assert rules["gSac_4factors"].events["fixBreak"] == "brokeFix"
    assert rules["gSac_4factors"].events["TRIAL_END"] == "trialEnd"
    assert rules["gSac_4factors"].null_events == ["nonStart", "blinkDuringSac"]
    assert rules["tokens"].create_missing
    assert not rules["tokens"].exclude_from_reference


def test_drift_result_interop():
    result = DriftResult(
        model=DriftModel.fit([1.0, 2.0], [3.0, 5.0]),
        n_reference=2,
        max_residual=0.0,
        problem=DriftFitUnreliable("oops")
    )
    result_2 = DriftResult.from_interop(result.to_interop())
    assert result_2.model == result.model
    assert result_2.n_reference == 2
    assert str(result_2.problem) == "oops"
    assert result_2.to_interop() == result.to_interop()
