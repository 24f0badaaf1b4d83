from pathlib import Path

import yaml
from pytest import raises

from tandem.errors import ConfigError
from tandem.model.codes import StrobeCodeRegistry
from tandem.alignment.drift import CorrectionRule, default_correction_rules
from tandem.neutral_zone.readers.csv import CsvEventLogReader
from tandem.plotters.diagnostics import DriftFitPlotter, TrialCountAlignmentPlotter
from tandem.config import TandemConfig


def test_defaults():
    config = TandemConfig.from_dict({})
    assert config.registry == StrobeCodeRegistry.from_csv()
    assert config.sessions == []
    assert config.matcher.trial_count_name == "trialCount"
    assert config.merger.timing_prefix == "pds"
    assert config.corrector.rules == default_correction_rules()
    assert config.corrector.residual_tolerance == 0.001
    assert config.diagnostics.file_format == "png"
    assert [plotter.__class__ for plotter in config.diagnostics.plotters] == [
        TrialCountAlignmentPlotter,
        DriftFitPlotter
    ]


def test_from_dict():
    config = TandemConfig.from_dict({
        "matcher": {"anchor_search_trials": 50, "value_range": [0, 40000]},
        "merge": {"timing_prefix": "control"},
        "drift": {
            "residual_tolerance": 0.002,
            "reference_hardware_event": "fixOn",
            "reference_control_event": "fixOn",
            "corrections": {
                "tokens": {"tasks": "uniqueTaskCode_tokens", "events": {"outcomeOn": "outcomeOn"}, "create_missing": True}
            }
        },
        "diagnostics": {
            "file_format": "pdf",
            "plotters": [{"class": "tandem.plotters.diagnostics.DriftFitPlotter"}]
        },
        "sessions": {
            "session_a": {
                "event_log": "events_a.csv",
                "control_files": "session_a_t0900.jsonl",
                "output_file": "session_a.json"
            },
            "session_b": {
                "event_log": {
                    "class": "tandem.neutral_zone.readers.csv.CsvEventLogReader",
                    "args": {"csv_file": "events_b.csv", "time_column": 1, "value_column": 0}
                },
                "control_files": ["b_1.jsonl", "b_2.jsonl"],
                "diagnostics_dir": "figures"
            }
        }
    })

    assert config.matcher.anchor_search_trials == 50
    assert config.matcher.value_range == (0, 40000)
    assert config.merger.timing_prefix == "control"
    assert config.corrector.residual_tolerance == 0.002
    assert config.corrector.reference_hardware_event == "fixOn"
    assert config.corrector.rules == [
        CorrectionRule(
            name="tokens",
            tasks=["uniqueTaskCode_tokens"],
            events={"outcomeOn": "outcomeOn"},
            create_missing=True
        )
    ]
    assert config.diagnostics.file_format == "pdf"
    assert len(config.diagnostics.plotters) == 1
    assert isinstance(config.diagnostics.plotters[0], DriftFitPlotter)

    (session_a, session_b) = config.sessions
    assert session_a.name == "session_a"
    assert session_a.event_log_reader == CsvEventLogReader("events_a.csv")
    assert session_a.control_files == ["session_a_t0900.jsonl"]
    assert session_a.output_file == "session_a.json"
    assert session_a.diagnostics_dir is None

    assert session_b.event_log_reader == CsvEventLogReader("events_b.csv", time_column=1, value_column=0)
    assert session_b.control_files == ["b_1.jsonl", "b_2.jsonl"]
    assert session_b.diagnostics_dir == "figures"


def test_from_yaml_and_session_overrides(tmp_path):
    config_yaml = Path(tmp_path, "config.yaml").as_posix()
    with open(config_yaml, "w") as f:
        yaml.safe_dump({
            "decoder": {"problem_names": ["targetTheta", "targetR"]},
            "sessions": {
                "session_a": {"event_log": "events_a.csv", "control_files": ["a.jsonl"]}
            }
        }, f)

    config = TandemConfig.from_yaml_and_session_overrides(
        config_yaml,
        [
            "session_a.control_files=a_t0900.jsonl,a_t1000.jsonl",
            "session_b.event_log=events_b.csv",
            "session_b.output_file=out/session_b.json",
        ]
    )

    assert config.decoder.classifier.problem_names == ["targetTheta", "targetR"]
    (session_a, session_b) = config.sessions
    assert session_a.event_log_reader == CsvEventLogReader("events_a.csv")
    assert session_a.control_files == ["a_t0900.jsonl", "a_t1000.jsonl"]
    assert session_b.event_log_reader == CsvEventLogReader("events_b.csv")
    assert session_b.control_files == []
    assert session_b.output_file == "out/session_b.json"


def test_overrides_only():
    config = TandemConfig.from_yaml_and_session_overrides(None, ["only.event_log=events.csv"])
    assert [spec.name for spec in config.sessions] == ["only"]


def test_custom_codes_csv(tmp_path):
    codes_csv = Path(tmp_path, "codes.csv")
    codes_csv.write_text("name,value,category\ntrialBegin,1,timing\ntrialEnd,2,timing\ntrialCount,3,info\n")
    config = TandemConfig.from_dict({"codes": {"csv_file": codes_csv.as_posix()}})
    assert len(config.registry) == 3
    assert config.registry.code_of("trialCount") == 3


def test_config_errors(tmp_path):
    with raises(ConfigError):
        TandemConfig.from_yaml_and_session_overrides(Path(tmp_path, "no_such_file.yaml").as_posix())

    bad_yaml = Path(tmp_path, "bad.yaml")
    bad_yaml.write_text("sessions: [unclosed\n")
    with raises(ConfigError):
        TandemConfig.from_yaml_and_session_overrides(bad_yaml.as_posix())

    with raises(ConfigError):
        TandemConfig.from_yaml_and_session_overrides(None, ["no_property_here"])

    with raises(ConfigError):
        TandemConfig.from_dict({"codes": {"csv_file": Path(tmp_path, "no_such_codes.csv").as_posix()}})

    with raises(ConfigError):
        TandemConfig.from_dict({"decoder": {"start_name": "noSuchCode"}})

    with raises(ConfigError):
        TandemConfig.from_dict({"matcher": {"trial_count_name": "noSuchCode"}})

    with raises(ConfigError):
        TandemConfig.from_dict({"merge": {"no_such_arg": 1}})

    with raises(ConfigError):
        TandemConfig.from_dict({"sessions": {"no_event_log": {"control_files": ["a.jsonl"]}}})

    with raises(ConfigError):
        TandemConfig.from_dict({"sessions": {"bad_reader": {"event_log": {"class": "tandem.no_such_module.Reader"}}}})

    with raises(ConfigError):
        TandemConfig.from_dict(["not", "a", "mapping"])


def test_example_config():
    example_yaml = Path(Path(__file__).parent.parent.parent, "docs", "example-config.yaml").as_posix()
    config = TandemConfig.from_yaml_and_session_overrides(example_yaml)
    assert [rule.name for rule in config.corrector.rules] == ["tokens"]
    assert config.corrector.rules[0].create_missing
    assert not config.corrector.rules[0].exclude_from_reference
    assert len(config.diagnostics.plotters) == 2

    (session,) = config.sessions
    assert session.name == "my_session"
    assert session.control_files == ["data/my_session_t0915.jsonl", "data/my_session_t1432.jsonl"]
