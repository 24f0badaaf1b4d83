from typing import Self
from collections.abc import Iterator
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
import logging
import csv

from tandem.errors import ConfigError


default_codes_csv = Path(Path(__file__).parent.parent, "resources", "codes.csv").as_posix()


class Category(Enum):
    """How to interpret a strobe: its time of occurrence, or the payload strobe that follows it."""

    TIMING = "timing"
    INFO = "info"

    @classmethod
    def parse(cls, text: str) -> Self:
        try:
            return cls(text.strip().lower())
        except ValueError:
            raise ConfigError(f"Unknown strobe category '{text}', expected one of {[c.value for c in cls]}")


@dataclass(frozen=True)
class StrobeCode():
    """One named strobe code."""

    name: str
    """Name for the code, like "fixOn" or "trialCount"."""

    value: int
    """Numeric value sent on the strobe lines, like 3001."""

    category: Category
    """Whether the code marks a time (TIMING) or announces a payload value that follows (INFO)."""


class StrobeCodeRegistry():
    """Immutable lookup between strobe code names, numeric values, and categories.

    Names and values must be pairwise distinct.
    Existing numeric values must never change, since they're baked into all previously recorded data.
    New names can be appended freely.

    payload_marker picks out names that only ever appear as the payload of another info strobe,
    like "uniqueTaskCode_gSac" following "taskCode".  These don't get their own trial info columns.
    """

    def __init__(self, codes: list[StrobeCode], payload_marker: str = "unique") -> None:
        duplicate_values = {}
        duplicate_names = {}
        for code in codes:
            duplicate_values.setdefault(code.value, []).append(code.name)
            duplicate_names.setdefault(code.name, []).append(code.value)

        problems = []
        for value, names in duplicate_values.items():
            if len(names) > 1:
                problems.append(f"value {value} is used by names {names}")
        for name, values in duplicate_names.items():
            if len(values) > 1:
                problems.append(f"name {name} is defined with values {values}")
        if problems:
            raise ConfigError("Duplicate strobe codes found: " + "; ".join(problems))

        self.payload_marker = payload_marker
        self._by_name = {code.name: code for code in codes}
        self._by_value = {code.value: code for code in codes}

    def __eq__(self, other: object) -> bool:
        """Compare registries by their codes, to support use of this class in tests."""
        if isinstance(other, self.__class__):
            return self._by_name == other._by_name and self.payload_marker == other.payload_marker
        else:  # pragma: no cover
            return False

    def __len__(self) -> int:
        return len(self._by_name)

    def __contains__(self, name: str) -> bool:
        return name in self._by_name

    def __iter__(self) -> Iterator[StrobeCode]:
        return iter(self._by_name.values())

    def code_of(self, name: str) -> int:
        try:
            return self._by_name[name].value
        except KeyError:
            raise KeyError(f"No strobe code named '{name}'")

    def category_of(self, name: str) -> Category:
        try:
            return self._by_name[name].category
        except KeyError:
            raise KeyError(f"No strobe code named '{name}'")

    def name_of(self, value: int | float) -> str | None:
        """Look up the name for a numeric value, or None for unregistered values (usually payloads)."""
        code = self._by_value.get(value)
        if code is None:
            return None
        return code.name

    def category_of_value(self, value: int | float) -> Category | None:
        code = self._by_value.get(value)
        if code is None:
            return None
        return code.category

    def is_payload_name(self, name: str) -> bool:
        return bool(self.payload_marker) and self.payload_marker in name

    def names_matching(self, pattern: str) -> list[str]:
        """Names that contain the given substring, in registry order."""
        return [name for name in self._by_name.keys() if pattern in name]

    @classmethod
    def from_csv(
        cls,
        codes_csv: str = default_codes_csv,
        payload_marker: str = "unique",
        dialect: str = 'excel',
        **fmtparams
    ) -> Self:
        """Load codes from a .csv with columns "name", "value", and "category".

        Category should be "timing" or "info".
        The .csv may contain additional columns, which will be ignored (eg a "comment" column).
        """
        codes = []
        with open(codes_csv, mode='r', newline='') as f:
            csv_reader = csv.DictReader(f, dialect=dialect, **fmtparams)
            missing = {"name", "value", "category"} - set(csv_reader.fieldnames or [])
            if missing:
                raise ConfigError(f"Codes CSV {codes_csv} is missing columns {sorted(missing)}")

            for row in csv_reader:
                try:
                    value = int(float(row['value']))
                except ValueError:
                    raise ConfigError(
                        f"Codes CSV {codes_csv} line {csv_reader.line_num} has non-numeric value <{row['value']}>")
                codes.append(StrobeCode(row['name'].strip(), value, Category.parse(row['category'])))

        logging.info(f"Loaded {len(codes)} strobe codes from {codes_csv}")
        return cls(codes, payload_marker)
