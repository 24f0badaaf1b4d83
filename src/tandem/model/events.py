from typing import Self
from dataclasses import dataclass
import numpy as np


@dataclass
class NumericEventList():
    """Wrap a 2D array listing one event per row: [timestamp, value].

    For a hardware event log, each row is one strobe: its time in seconds and its numeric code.
    """

    event_data: np.ndarray
    """2D array backing the event list.

    event_data must have shape (n, 2) where:
     - n is the number of events (one event per row)
     - column 0 holds the event timestamps
     - column 1 holds the event values
    """

    def __eq__(self, other: object) -> bool:
        """Compare event_data arrays as-a-whole instead of element-wise."""
        if isinstance(other, self.__class__):
            return (self.event_data.size == 0 and other.event_data.size == 0) or np.array_equal(self.event_data, other.event_data)
        else:
            return False

    @classmethod
    def from_values_and_times(cls, values, times) -> Self:
        """Pair up separate sequences of event values and event times, as hardware readers tend to produce."""
        values = np.asarray(values, dtype=float).reshape(-1)
        times = np.asarray(times, dtype=float).reshape(-1)
        if values.size != times.size:
            raise ValueError(f"Got {values.size} event values but {times.size} event times.")
        return cls(np.column_stack([times, values]))

    @classmethod
    def empty(cls) -> Self:
        return cls(np.empty([0, 2]))

    def event_count(self) -> int:
        """Get the number of events in the list."""
        return self.event_data.shape[0]

    def get_times(self) -> np.ndarray:
        """Get just the event times, ignoring event values."""
        return self.event_data[:, 0]

    def get_values(self) -> np.ndarray:
        """Get just the event values, ignoring event times."""
        return self.event_data[:, 1]

    def get_times_of(self, event_value: float) -> np.ndarray:
        """Get times of any events matching the given event_value."""
        matching_rows = (self.event_data[:, 1] == event_value)
        return self.event_data[matching_rows, 0]

    def is_sorted(self) -> bool:
        """Check that event times are non-decreasing."""
        return bool(np.all(np.diff(self.get_times()) >= 0))

    def append(self, other: Self) -> None:
        """Add new events at the end of the existing list.

        This modifies the event_data in place.
        """
        self.event_data = np.concatenate([self.event_data, other.event_data])
