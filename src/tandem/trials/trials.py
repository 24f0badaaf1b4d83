from typing import Any
from dataclasses import dataclass, field
import logging

import numpy as np

from tandem.errors import IntegrityError
from tandem.model.codes import Category, StrobeCodeRegistry
from tandem.model.events import NumericEventList
from tandem.model.tables import TrialTable
from tandem.trials.categories import StrobeClassifier, TIMING, INFO


@dataclass
class Trial():
    """A delimited part of the hardware event log, from one trial begin strobe up to the next."""

    start_time: float
    """The begining of the trial in time, the time of its delimiting event."""

    end_time: float
    """The end of the trial in time, the next delimiting event or else the last event in the log."""

    events: NumericEventList = field(default_factory=NumericEventList.empty)
    """The raw [time, value] events that fall within this trial."""

    categories: np.ndarray = field(default_factory=lambda: np.empty([0], dtype=np.int8))
    """The corrected TIMING / INFO category of each event in this trial."""

    def __eq__(self, other: object) -> bool:
        """Compare trials field-wise, to support use of this class in tests."""
        if isinstance(other, self.__class__):
            return (
                self.start_time == other.start_time
                and self.end_time == other.end_time
                and self.events == other.events
                and np.array_equal(self.categories, other.categories)
            )
        else:  # pragma: no cover
            return False

    def get_values(self) -> np.ndarray:
        return self.events.get_values()

    def get_times(self) -> np.ndarray:
        return self.events.get_times()


class TrialDelimiter():
    """Split an event log into trials, using the times of trial begin strobes."""

    def __init__(self, start_value: float) -> None:
        self.start_value = start_value

    def __eq__(self, other: object) -> bool:
        """Compare delimiters field-wise, to support use of this class in tests."""
        if isinstance(other, self.__class__):
            return self.start_value == other.start_value
        else:  # pragma: no cover
            return False

    def delimit(self, event_list: NumericEventList) -> tuple[np.ndarray, np.ndarray]:
        """Return arrays of trial start and end times.

        Each trial ends where the next one starts.
        The last trial ends at the last event in the log.
        """
        start_times = event_list.get_times_of(self.start_value)
        if start_times.size == 0:
            return (start_times, np.empty([0]))

        end_times = np.append(start_times[1:], event_list.get_times()[-1])
        if start_times.size != end_times.size:  # pragma: no cover
            raise IntegrityError(
                f"Found {start_times.size} trial starts but {end_times.size} trial ends.")
        return (start_times, end_times)

    def slice_trials(self, event_list: NumericEventList, categories: np.ndarray) -> list[Trial]:
        """Cut the event log and its categories into Trials, each trial a half-open time range [start, end).

        The last trial ends at the last event in the log, so events stamped at exactly that time are left out.
        """
        if not event_list.is_sorted():
            raise IntegrityError("Event log timestamps are not in non-decreasing order.")

        (start_times, end_times) = self.delimit(event_list)
        times = event_list.get_times()
        trials = []
        for start_time, end_time in zip(start_times, end_times):
            first = np.searchsorted(times, start_time, side="left")
            stop = np.searchsorted(times, end_time, side="left")
            trial = Trial(
                start_time=float(start_time),
                end_time=float(end_time),
                events=NumericEventList(event_list.event_data[first:stop, :]),
                categories=categories[first:stop]
            )
            trials.append(trial)
        return trials


class TrialExtractor():
    """Populate per-trial tables of event times and info values from each trial's strobes.

    Timing strobes contribute their timestamp to the event times table.
    Info strobes contribute the value of the very next strobe to the trial info table,
    and that next strobe is consumed, so it won't be interpreted again as a code of its own.
    Unregistered values are ignored, as are payload names like "uniqueTaskCode_gSac".
    When a code occurs more than once in a trial, the last occurrence wins.
    """

    def __init__(
        self,
        registry: StrobeCodeRegistry,
        start_name: str = "trialBegin",
        end_name: str = "trialEnd"
    ) -> None:
        self.registry = registry
        self.start_name = start_name
        self.end_name = end_name

    def extract_trial(self, trial: Trial, trial_index: int = None) -> tuple[dict[str, Any], dict[str, float]]:
        """Walk one trial's events and return (info, times) dictionaries for it."""
        info = {}
        times = {}
        values = trial.get_values()
        event_times = trial.get_times()
        event_count = values.size

        index = 0
        while index < event_count:
            name = self.registry.name_of(values[index])
            if name is None or name == self.start_name or name == self.end_name:
                index += 1
                continue

            category = trial.categories[index]
            registered = self.registry.category_of(name)
            if category == TIMING and registered is Category.TIMING:
                times[name] = float(event_times[index])
            elif category == INFO and registered is Category.INFO and not self.registry.is_payload_name(name):
                if index + 1 < event_count:
                    info[name] = float(values[index + 1])
                    index += 2
                    continue
                else:
                    logging.debug(f"Info strobe {name} is the last event of trial {trial_index}, dropping it.")
            index += 1

        return (info, times)

    def populate(self, trials: list[Trial]) -> tuple[TrialTable, TrialTable]:
        """Build the trial info and event times tables for all trials.

        First each trial reports what it found, then the tables are made from the union of names found.
        Trial begin and end times come from the trials themselves.
        Columns with no values in any trial are dropped.
        """
        info_rows = []
        time_rows = []
        for index, trial in enumerate(trials):
            (info, times) = self.extract_trial(trial, index)
            info_rows.append(info)
            time_rows.append(times)

        trial_info = TrialTable.from_rows(info_rows)
        event_times = TrialTable.from_rows(time_rows)
        event_times.columns[self.start_name] = np.array([trial.start_time for trial in trials], dtype=float)
        event_times.columns[self.end_name] = np.array([trial.end_time for trial in trials], dtype=float)

        dropped_info = trial_info.drop_empty_columns()
        dropped_times = event_times.drop_empty_columns()
        if dropped_info or dropped_times:
            logging.debug(f"Dropped empty columns: {dropped_info + dropped_times}")
        return (trial_info, event_times)


@dataclass
class DecodedSession():
    """Hardware trials and per-trial tables decoded from one session's event log."""

    trials: list[Trial]
    trial_info: TrialTable
    event_times: TrialTable
    categories: np.ndarray

    def trial_count(self) -> int:
        return len(self.trials)


class EventStreamDecoder():
    """Turn a flat hardware event log into trials and per-trial tables, using a code registry."""

    def __init__(
        self,
        registry: StrobeCodeRegistry,
        start_name: str = "trialBegin",
        end_name: str = "trialEnd",
        problem_pattern: str = "Seed",
        problem_names: list[str] = ["targetTheta"]
    ) -> None:
        self.registry = registry
        self.classifier = StrobeClassifier(registry, problem_pattern, problem_names)
        self.delimiter = TrialDelimiter(registry.code_of(start_name))
        self.extractor = TrialExtractor(registry, start_name, end_name)

    def decode(self, event_list: NumericEventList) -> DecodedSession:
        categories = self.classifier.classify(event_list.get_values())
        trials = self.delimiter.slice_trials(event_list, categories)
        if not trials:
            logging.warning(f"No trial begin strobes found among {event_list.event_count()} events.")
        (trial_info, event_times) = self.extractor.populate(trials)
        logging.info(
            f"Decoded {len(trials)} trials with {len(trial_info.names())} info and {len(event_times.names())} timing columns.")
        return DecodedSession(trials, trial_info, event_times, categories)

    def decode_values_and_times(self, values, times) -> DecodedSession:
        return self.decode(NumericEventList.from_values_and_times(values, times))
