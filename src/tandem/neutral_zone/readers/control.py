import logging
from types import TracebackType
from typing import Self, ContextManager
from collections.abc import Iterator
from pathlib import Path
import re

import json

from tandem.model.control import ControlTrial, union_control_fields


class ControlTrialFile(ContextManager):
    """Write and read control software trials using one line of JSON per trial.

    This uses the concept of "JSON Lines" for simple, streamable files.
    https://jsonlines.org/

    Each line looks like:
    {"strobes": [...], "trial_count": 12, "variables": {...}, "timing": {...}}
    Only "strobes" is required.
    """

    def __init__(self, file_name: str) -> None:
        self.file_name = file_name

    def __enter__(self) -> Self:
        with open(self.file_name, "w", encoding="utf-8"):
            logging.info(f"Creating empty JSON control trial file: {self.file_name}")
        return self

    def __exit__(
        self,
        __exc_type: type[BaseException] | None,
        __exc_value: BaseException | None,
        __traceback: TracebackType | None
    ) -> bool | None:
        pass

    def append_trial(self, trial: ControlTrial) -> None:
        trial_json = json.dumps(trial.to_interop())
        with open(self.file_name, 'a', encoding="utf-8") as f:
            f.write(trial_json + "\n")

    def read_trials(self) -> Iterator[ControlTrial]:
        with open(self.file_name, 'r', encoding="utf-8") as f:
            for line_num, json_line in enumerate(f):
                if not json_line.strip():
                    continue
                try:
                    trial_dict = json.loads(json_line)
                except json.JSONDecodeError as error:
                    logging.info(f"Skipping control trial file '{self.file_name}' line {line_num} because {error.args}")
                    continue
                yield ControlTrial.from_interop(trial_dict, source=self.file_name)


# Like "session_t1432" or "session_t143210".
time_token_pattern = re.compile(r"_t(\d{4,6})")


def source_sort_key(path: str) -> tuple[int, float]:
    """Sort key for control files of the same session: clock time from the file name, else modification time.

    Files with a time in the name come first, ordered by that time as HHMMSS.
    Other files follow, ordered by modification time.
    """
    match = time_token_pattern.search(Path(path).stem)
    if match:
        token = match.group(1)
        if len(token) == 4:
            token = token + "00"
        return (0, float(token))

    logging.warning(f"No time found in control file name '{path}', using file modification time.")
    return (1, Path(path).stat().st_mtime)


def merge_control_sources(paths: list[str]) -> list[ControlTrial]:
    """Read control trials from several files of one session, in chronological order, with fields unioned."""
    sorted_paths = sorted(paths, key=source_sort_key)
    if len(sorted_paths) > 1:
        logging.info(f"Merging {len(sorted_paths)} control files in order: {sorted_paths}")

    trials = []
    for path in sorted_paths:
        control_file = ControlTrialFile(path)
        file_trials = list(control_file.read_trials())
        logging.info(f"Read {len(file_trials)} control trials from {path}")
        trials.extend(file_trials)

    return union_control_fields(trials)
