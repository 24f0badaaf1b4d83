import os
from pathlib import Path
from pytest import fixture

from tandem.model.control import ControlTrial
from tandem.neutral_zone.readers.control import ControlTrialFile, merge_control_sources, source_sort_key


@fixture
def fixture_path(request):
    this_file = Path(request.module.__file__)
    return Path(this_file.parent, 'fixture_files')


def test_write_and_read(tmp_path):
    file_name = Path(tmp_path, "control.jsonl").as_posix()
    trials = [
        ControlTrial(strobes=[30001, 11002, 1], trial_count=1, variables={"targetTheta": 0}),
        ControlTrial(strobes=[30001, 11002, 2], timing={"trialStartPTB": 1003.0}),
    ]
    with ControlTrialFile(file_name) as control_file:
        for trial in trials:
            control_file.append_trial(trial)

    read_back = list(ControlTrialFile(file_name).read_trials())
    assert [trial.source for trial in read_back] == [file_name, file_name]
    for trial in read_back:
        trial.source = None
    assert read_back == trials


def test_read_skips_bad_lines(fixture_path):
    file_name = Path(fixture_path, "session_t0915.jsonl").as_posix()
    trials = list(ControlTrialFile(file_name).read_trials())
    assert len(trials) == 2
    assert trials[0].trial_count == 1
    assert trials[1].trial_count is None
    assert trials[1].value_after(11002) == 2


def test_source_sort_key(tmp_path):
    assert source_sort_key("data/session_t1432.jsonl") == (0, 143200.0)
    assert source_sort_key("data/session_t143210.jsonl") == (0, 143210.0)
    assert source_sort_key("session_t0915_v2.jsonl") < source_sort_key("session_t1432.jsonl")

    no_time = Path(tmp_path, "session.jsonl")
    no_time.write_text("")
    (category, mtime) = source_sort_key(no_time.as_posix())
    assert category == 1
    assert mtime == no_time.stat().st_mtime


def test_merge_in_chronological_order(fixture_path):
    later = Path(fixture_path, "session_t1432.jsonl").as_posix()
    earlier = Path(fixture_path, "session_t0915.jsonl").as_posix()
    trials = merge_control_sources([later, earlier])

    assert [trial.value_after(11002) for trial in trials] == [1, 2, 3, 4]
    assert [trial.source for trial in trials] == [earlier, earlier, later, later]

    # Fields are unioned across all files.
    for trial in trials:
        assert set(trial.variables.keys()) == {"targetTheta", "rewardDuration"}
        assert set(trial.timing.keys()) == {"trialStartPTB", "fixOn"}
    assert trials[1].variables["targetTheta"] is None
    assert trials[3].variables["rewardDuration"] == 0.3
    assert trials[0].timing["fixOn"] is None


def test_merge_by_modification_time(tmp_path):
    first = Path(tmp_path, "first.jsonl")
    first.write_text('{"strobes": [1]}\n')
    second = Path(tmp_path, "second.jsonl")
    second.write_text('{"strobes": [2]}\n')
    os.utime(first, (1000, 1000))
    os.utime(second, (2000, 2000))

    trials = merge_control_sources([second.as_posix(), first.as_posix()])
    assert [trial.strobes for trial in trials] == [[1], [2]]


def test_merge_nothing():
    assert merge_control_sources([]) == []
