from typing import Self
import logging
import csv
import numpy as np

from tandem.model.events import NumericEventList
from tandem.neutral_zone.readers.readers import Reader


class CsvEventLogReader(Reader):
    """Read a hardware event log from a CSV with rows of numbers: time, value.

    Skips lines that contain non-numeric values, like a header.
    Set time_column and value_column for files that put them in other places.
    """

    def __init__(
        self,
        csv_file: str = None,
        results_key: str = "events",
        time_column: int = 0,
        value_column: int = 1,
        lines_per_chunk: int = 1000,
        dialect: str = 'excel',
        **fmtparams
    ) -> None:
        self.csv_file = csv_file
        self.results_key = results_key
        self.time_column = time_column
        self.value_column = value_column
        self.lines_per_chunk = lines_per_chunk
        self.dialect = dialect
        self.fmtparams = fmtparams

        self.file_stream = None
        self.csv_reader = None

    def __eq__(self, other: object) -> bool:
        """Compare CSV readers field-wise, to support use of this class in tests."""
        if isinstance(other, self.__class__):
            return (
                self.csv_file == other.csv_file
                and self.results_key == other.results_key
                and self.time_column == other.time_column
                and self.value_column == other.value_column
                and self.lines_per_chunk == other.lines_per_chunk
                and self.dialect == other.dialect
                and self.fmtparams == other.fmtparams
            )
        else:  # pragma: no cover
            return False

    def __enter__(self) -> Self:
        # See https://docs.python.org/3/library/csv.html#id3 for why this has newline=''
        self.file_stream = open(self.csv_file, mode='r', newline='')
        self.csv_reader = csv.reader(self.file_stream, self.dialect, **self.fmtparams)
        return self

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        if self.file_stream:
            self.file_stream.close()
            self.file_stream = None
        self.csv_reader = None

    def read_next(self) -> dict[str, NumericEventList]:
        chunk = []
        while len(chunk) < self.lines_per_chunk:
            line_num = self.csv_reader.line_num
            try:
                next_row = self.csv_reader.__next__()
            except StopIteration:
                # Still return the last, partial chunk below.
                break

            if not next_row:
                continue

            try:
                chunk.append([float(next_row[self.time_column]), float(next_row[self.value_column])])
            except (ValueError, IndexError) as error:
                logging.info(f"Skipping CSV '{self.csv_file}' line {line_num} <{next_row}> because {error.args}")
                continue

        if chunk:
            return {self.results_key: NumericEventList(np.array(chunk))}
        else:
            raise StopIteration

    def get_initial(self) -> dict[str, NumericEventList]:
        return {self.results_key: NumericEventList.empty()}
