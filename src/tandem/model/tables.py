from typing import Any, Self
from collections.abc import Iterable
from numbers import Number
import math

import numpy as np


def is_null(value: Any) -> bool:
    """None and NaN both mean "no value" in trial tables."""
    if value is None:
        return True
    if isinstance(value, Number) and not isinstance(value, bool):
        return math.isnan(value)
    return False


def is_scalar_number(value: Any) -> bool:
    return isinstance(value, (Number, np.number)) and not isinstance(value, (complex, np.complexfloating))


def interop_value(value: Any) -> Any:
    """Convert a cell to plain Python for JSON, with None in place of nulls at any depth."""
    if isinstance(value, np.ndarray):
        value = value.tolist()
    if isinstance(value, (list, tuple)):
        return [interop_value(item) for item in value]
    if isinstance(value, dict):
        return {key: interop_value(item) for key, item in value.items()}
    if isinstance(value, np.generic):
        value = value.item()
    if is_null(value):
        return None
    return value


class TrialTable():
    """Named columns of per-trial data, one row per hardware trial.

    Columns are numpy arrays of length trial_count.
    Numeric columns are float64 with NaN for missing values.
    Other columns (strings, lists, etc.) are object arrays with None for missing values.

    Columns are discovered from data: a column exists only if some trial produced a value for it.
    """

    def __init__(self, trial_count: int, columns: dict[str, np.ndarray] = None) -> None:
        self.trial_count = trial_count
        self.columns = {}
        for name, column in (columns or {}).items():
            column = np.asarray(column)
            if column.shape[0] != trial_count:
                raise ValueError(f"Column {name} has {column.shape[0]} rows, expected {trial_count}.")
            self.columns[name] = column

    def __eq__(self, other: object) -> bool:
        """Compare tables column-wise, treating nulls as equal to each other."""
        if isinstance(other, self.__class__):
            if self.trial_count != other.trial_count or self.columns.keys() != other.columns.keys():
                return False
            return all(
                self._columns_equal(self.columns[name], other.columns[name])
                for name in self.columns.keys()
            )
        else:  # pragma: no cover
            return False

    @staticmethod
    def _columns_equal(a: np.ndarray, b: np.ndarray) -> bool:
        if a.dtype.kind == "f" and b.dtype.kind == "f":
            return np.array_equal(a, b, equal_nan=True)
        return all(
            (is_null(x) and is_null(y)) or (not is_null(x) and not is_null(y) and x == y)
            for x, y in zip(a.tolist(), b.tolist())
        )

    def __contains__(self, name: str) -> bool:
        return name in self.columns

    def __getitem__(self, name: str) -> np.ndarray:
        return self.columns[name]

    def names(self) -> list[str]:
        return list(self.columns.keys())

    def add_column(self, name: str, numeric: bool = True) -> np.ndarray:
        """Allocate an all-null column, or return the existing column of that name."""
        if name not in self.columns:
            if numeric:
                self.columns[name] = np.full(self.trial_count, np.nan)
            else:
                self.columns[name] = np.full(self.trial_count, None, dtype=object)
        return self.columns[name]

    def set_value(self, name: str, trial_index: int, value: Any) -> None:
        """Store a value in the named column, allocating the column first if needed."""
        if name not in self.columns:
            self.add_column(name, numeric=is_null(value) or is_scalar_number(value))
        column = self.columns[name]
        if column.dtype.kind == "f" and not is_null(value) and not is_scalar_number(value):
            # A numeric column just met a non-numeric value, so widen it to hold both.
            column = np.array([None if is_null(v) else v for v in column.tolist()], dtype=object)
            self.columns[name] = column
        if is_null(value):
            column[trial_index] = np.nan if column.dtype.kind == "f" else None
        else:
            column[trial_index] = value

    def get_value(self, name: str, trial_index: int, default: Any = None) -> Any:
        """Get one cell, or the default if the column is absent or the cell is null."""
        column = self.columns.get(name)
        if column is None:
            return default
        value = column[trial_index]
        if is_null(value):
            return default
        return value.item() if isinstance(value, np.generic) else value

    def null_mask(self, name: str) -> np.ndarray:
        column = self.columns[name]
        if column.dtype.kind == "f":
            return np.isnan(column)
        return np.array([is_null(value) for value in column.tolist()], dtype=bool)

    def drop_empty_columns(self) -> list[str]:
        """Remove columns that are null for every trial, return the dropped names."""
        empty = [name for name in self.columns.keys() if self.null_mask(name).all()]
        for name in empty:
            del self.columns[name]
        return empty

    def to_interop(self) -> dict[str, list]:
        """Convert to plain lists with None for nulls, suitable for JSON."""
        interop = {}
        for name, column in self.columns.items():
            interop[name] = [interop_value(value) for value in column.tolist()]
        return interop

    @classmethod
    def from_interop(cls, trial_count: int, interop: dict[str, list]) -> Self:
        rows = [{} for _ in range(trial_count)]
        for name, values in interop.items():
            for index, value in enumerate(values):
                rows[index][name] = value
        return cls.from_rows(rows, names=interop.keys())

    @classmethod
    def from_rows(cls, rows: list[dict[str, Any]], names: Iterable[str] = None) -> Self:
        """Build a table in two passes: discover all column names and types, then fill in values.

        Each row is a dict of name-value pairs for one trial.
        Names missing from a row, or given as None, become nulls.
        Pass names to fix the column order, or to keep columns that have no values at all.
        """
        if names is None:
            discovered = {}
            for row in rows:
                for name in row.keys():
                    discovered[name] = None
            names = discovered.keys()

        numeric = {}
        for name in names:
            numeric[name] = all(
                is_null(row.get(name)) or is_scalar_number(row.get(name))
                for row in rows
            )

        table = cls(len(rows))
        for name in names:
            table.add_column(name, numeric[name])
        for index, row in enumerate(rows):
            for name in names:
                value = row.get(name)
                if not is_null(value):
                    table.columns[name][index] = value
        return table
