from collections.abc import Iterable
import logging

import numpy as np

from tandem.model.codes import Category, StrobeCodeRegistry


TIMING = 0
INFO = 1


class StrobeClassifier():
    """Assign a TIMING or INFO category to every value in a raw strobe stream.

    Info strobes are followed by a payload value, and payloads can collide with the numeric values of
    registered codes.  This applies a fixed set of corrections for that:

     1. Look up each value's registered category.  Unregistered values are assumed to be payloads (INFO).
     2. For "problematic" info strobes, whose payloads are known to collide with other codes,
        force the category of the following value to INFO.
        These are names containing problem_pattern (like "stimSeed"), plus the names in problem_names.
     3. Reset isolated TIMING values sitting between two INFO values to INFO.
        Only single samples are reset, runs of two or more are left alone.
     4. If the last category differs from the second-to-last, make it match (there's nothing after it to look at).
    """

    def __init__(
        self,
        registry: StrobeCodeRegistry,
        problem_pattern: str = "Seed",
        problem_names: Iterable[str] = ("targetTheta",)
    ) -> None:
        self.registry = registry
        self.problem_pattern = problem_pattern
        self.problem_names = list(problem_names)

        names = registry.names_matching(problem_pattern) if problem_pattern else []
        for name in self.problem_names:
            if name in registry and name not in names:
                names.append(name)
            elif name not in registry:
                logging.warning(f"Problematic info strobe {name} is not in the code registry, ignoring it.")
        self.problem_values = np.array([registry.code_of(name) for name in names], dtype=float)

    def registered_categories(self, values: np.ndarray) -> np.ndarray:
        """Plain registry lookup, with INFO for unregistered values."""
        categories = np.full(values.shape, INFO, dtype=np.int8)
        for index, value in enumerate(values.tolist()):
            if self.registry.category_of_value(value) is Category.TIMING:
                categories[index] = TIMING
        return categories

    def classify(self, values) -> np.ndarray:
        """Return an int8 array with TIMING (0) or INFO (1) for each given strobe value."""
        values = np.asarray(values, dtype=float).reshape(-1)
        categories = self.registered_categories(values)
        if values.size == 0:
            return categories

        # Values right after a problematic info strobe are payloads, whatever they collide with.
        problem_locations = np.flatnonzero(np.isin(values[:-1], self.problem_values))
        categories[problem_locations + 1] = INFO

        if values.size < 2:
            return categories

        # A lone TIMING between two INFO neighbors is a payload that collided with a timing code.
        # Only this direction flips: a lone INFO between TIMING neighbors is a named info strobe, left as INFO.
        # All positions are judged against the same snapshot.
        snapshot = categories.copy()
        isolated = np.zeros(values.shape, dtype=bool)
        isolated[1:-1] = (
            (snapshot[1:-1] == TIMING)
            & (snapshot[:-2] == INFO)
            & (snapshot[2:] == INFO)
        )
        categories[isolated] = INFO

        # No look-ahead at the very end.
        if categories[-1] != categories[-2]:
            categories[-1] = categories[-2]

        return categories

    def classify_as_categories(self, values) -> list[Category]:
        return [Category.INFO if category == INFO else Category.TIMING for category in self.classify(values)]
