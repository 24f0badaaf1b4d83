from typing import Any, Self
import logging
from dataclasses import dataclass
import yaml

from tandem.errors import ConfigError
from tandem.model.codes import StrobeCodeRegistry, default_codes_csv
from tandem.trials.trials import EventStreamDecoder
from tandem.alignment.matcher import TrialMatcher
from tandem.alignment.merge import ControlFieldMerger
from tandem.alignment.drift import DriftCorrector, CorrectionRule, default_correction_rules
from tandem.neutral_zone.readers.readers import Reader
from tandem.neutral_zone.readers.csv import CsvEventLogReader
from tandem.plotters.diagnostics import DiagnosticPlotter, DiagnosticsWriter
from tandem.session import SessionSpec, SessionProcessor


@dataclass
class TandemConfig():
    registry: StrobeCodeRegistry
    decoder: EventStreamDecoder
    matcher: TrialMatcher
    merger: ControlFieldMerger
    corrector: DriftCorrector
    diagnostics: DiagnosticsWriter
    sessions: list[SessionSpec]

    def processor(self) -> SessionProcessor:
        return SessionProcessor(self.decoder, self.matcher, self.merger, self.corrector, self.diagnostics)

    @classmethod
    def from_yaml_and_session_overrides(cls, config_yaml: str = None, session_overrides: list[str] = []) -> Self:
        if config_yaml:
            try:
                with open(config_yaml) as f:
                    config = yaml.safe_load(f) or {}
            except (OSError, yaml.YAMLError) as error:
                raise ConfigError(f"Unable to read config YAML {config_yaml}: {error}") from error
        else:
            config = {}

        # session_a.event_log=events.csv
        sessions_config = config.setdefault("sessions", {}) or {}
        config["sessions"] = sessions_config
        for override in session_overrides or []:
            try:
                (session_name, assignment) = override.split(".", maxsplit=1)
                (property, value) = assignment.split("=", maxsplit=1)
            except ValueError as error:
                raise ConfigError(f"Session override should look like name.property=value, got: {override}") from error
            session_config = sessions_config.setdefault(session_name, {}) or {}
            if property == "control_files":
                session_config[property] = [part for part in value.split(",") if part]
            else:
                session_config[property] = value
            sessions_config[session_name] = session_config

        return TandemConfig.from_dict(config)

    @classmethod
    def from_dict(cls, config: dict[str, Any]) -> Self:
        if not isinstance(config, dict):
            raise ConfigError(f"Config should be a mapping of sections, got {type(config).__name__}")

        registry = configure_registry(config.get("codes", {}) or {})
        try:
            decoder = configure_decoder(config.get("decoder", {}) or {}, registry)
            matcher = configure_matcher(config.get("matcher", {}) or {}, registry)
            merger = ControlFieldMerger(**(config.get("merge", {}) or {}))
            corrector = configure_drift(config.get("drift", {}) or {}, registry)
            diagnostics = configure_diagnostics(config.get("diagnostics", {}) or {})
        except (KeyError, TypeError, ValueError) as error:
            raise ConfigError(f"Invalid config: {error}") from error

        sessions = configure_sessions(config.get("sessions", {}) or {})
        return TandemConfig(
            registry=registry,
            decoder=decoder,
            matcher=matcher,
            merger=merger,
            corrector=corrector,
            diagnostics=diagnostics,
            sessions=sessions
        )


def configure_registry(codes_config: dict[str, Any]) -> StrobeCodeRegistry:
    csv_file = codes_config.get("csv_file", default_codes_csv)
    payload_marker = codes_config.get("payload_marker", "unique")
    try:
        return StrobeCodeRegistry.from_csv(csv_file, payload_marker=payload_marker)
    except OSError as error:
        raise ConfigError(f"Unable to read codes CSV {csv_file}: {error}") from error


def configure_decoder(decoder_config: dict[str, Any], registry: StrobeCodeRegistry) -> EventStreamDecoder:
    start_name = decoder_config.get("start_name", "trialBegin")
    end_name = decoder_config.get("end_name", "trialEnd")
    for name in [start_name, end_name]:
        if name not in registry:
            raise ConfigError(f"Trial delimiting code {name} is not in the code registry.")

    return EventStreamDecoder(
        registry,
        start_name=start_name,
        end_name=end_name,
        problem_pattern=decoder_config.get("problem_pattern", "Seed"),
        problem_names=decoder_config.get("problem_names", ["targetTheta"])
    )


def configure_matcher(matcher_config: dict[str, Any], registry: StrobeCodeRegistry) -> TrialMatcher:
    trial_count_name = matcher_config.get("trial_count_name", "trialCount")
    if trial_count_name not in registry:
        raise ConfigError(f"Trial count code {trial_count_name} is not in the code registry.")

    return TrialMatcher(
        registry,
        trial_count_name=trial_count_name,
        anchor_search_trials=int(matcher_config.get("anchor_search_trials", 100)),
        lcs_window=int(matcher_config.get("lcs_window", 100)),
        min_lcs_fraction=float(matcher_config.get("min_lcs_fraction", 0.5)),
        value_range=tuple(matcher_config.get("value_range", [0, 32768]))
    )


def configure_drift(drift_config: dict[str, Any], registry: StrobeCodeRegistry) -> DriftCorrector:
    corrections_config = drift_config.get("corrections", None)
    if corrections_config is None:
        rules = default_correction_rules()
    else:
        rules = [
            CorrectionRule.from_dict(rule_name, rule_config or {})
            for rule_name, rule_config in corrections_config.items()
        ]
    logging.info(f"Using {len(rules)} drift correction rules: {[rule.name for rule in rules]}")

    return DriftCorrector(
        registry,
        rules=rules,
        task_column=drift_config.get("task_column", "taskCode"),
        reference_hardware_event=drift_config.get("reference_hardware_event", "trialBegin"),
        reference_control_event=drift_config.get("reference_control_event", None),
        control_start_field=drift_config.get("control_start_field", "trialStartPTB"),
        residual_tolerance=float(drift_config.get("residual_tolerance", 0.001)),
        outlier_sigma=float(drift_config.get("outlier_sigma", 3.0))
    )


def configure_diagnostics(diagnostics_config: dict[str, Any]) -> DiagnosticsWriter:
    file_format = diagnostics_config.get("file_format", "png")
    plotters_config = diagnostics_config.get("plotters", None)
    if plotters_config is None:
        return DiagnosticsWriter(file_format=file_format)

    logging.info(f"Using {len(plotters_config)} diagnostic plotters.")
    plotters = []
    for plotter_config in plotters_config:
        plotter_class = plotter_config["class"]
        plotter_args = plotter_config.get("args", {})
        logging.info(f"  {plotter_class}")
        plotters.append(DiagnosticPlotter.from_dynamic_import(plotter_class, **plotter_args))

    return DiagnosticsWriter(plotters, file_format)


def configure_event_log_reader(event_log_config: str | dict[str, Any]) -> Reader:
    """A plain file name means a CSV event log, otherwise expect a reader class and args."""
    if isinstance(event_log_config, str):
        return CsvEventLogReader(csv_file=event_log_config)

    reader_class = event_log_config["class"]
    reader_args = event_log_config.get("args", {})
    return Reader.from_dynamic_import(reader_class, **reader_args)


def configure_sessions(sessions_config: dict[str, dict]) -> list[SessionSpec]:
    sessions = []
    for (session_name, session_config) in sessions_config.items():
        session_config = session_config or {}
        event_log_config = session_config.get("event_log", None)
        if not event_log_config:
            raise ConfigError(f"Session {session_name} has no event_log.")

        try:
            event_log_reader = configure_event_log_reader(event_log_config)
        except (ImportError, AttributeError, KeyError, TypeError) as error:
            raise ConfigError(f"Session {session_name} has an invalid event_log reader: {error}") from error

        control_files = session_config.get("control_files", [])
        if isinstance(control_files, str):
            control_files = [control_files]

        sessions.append(
            SessionSpec(
                name=str(session_name),
                event_log_reader=event_log_reader,
                control_files=list(control_files),
                events_key=session_config.get("events_key", "events"),
                output_file=session_config.get("output_file", None),
                diagnostics_dir=session_config.get("diagnostics_dir", None)
            )
        )

    logging.info(f"Configured {len(sessions)} sessions.")
    return sessions
