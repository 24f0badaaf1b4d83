from types import TracebackType
from typing import Any, ContextManager
import logging

from tandem.model.model import DynamicImport


class Reader(DynamicImport, ContextManager):
    """Interface for consuming session inputs from some source, like a file, one increment at a time.

    Each reader implementation should:
     - Encapsulate the details of how to open a data source and get data from it.
     - Implement __enter__() and __exit__() to acquire and release resources like file handles.
       See: https://peps.python.org/pep-0343/#standard-terminology
     - Implement get_initial() to return a dictionary of name - data entries, showing the names and types
       of data that the reader will produce, with no data in them yet.
     - Implement read_next() to consume an increment of data and return it as a dictionary like get_initial().
       Return None when the increment had nothing usable in it, and raise StopIteration at the end.
    """

    def __enter__(self) -> Any:
        """Open the data source and return an object that we can "read_next()" on -- probably self."""
        raise NotImplementedError  # pragma: no cover

    def __exit__(
        self,
        __exc_type: type[BaseException] | None,
        __exc_value: BaseException | None,
        __traceback: TracebackType | None
    ) -> bool | None:
        """Release any resources acquired during __enter()__."""
        raise NotImplementedError  # pragma: no cover

    def read_next(self) -> dict[str, Any]:
        """Consume an increment of data from the source, or raise StopIteration when there's no more."""
        raise NotImplementedError  # pragma: no cover

    def get_initial(self) -> dict[str, Any]:
        """Create an initial dictionary of names and empty data that the reader expects to produce."""
        raise NotImplementedError  # pragma: no cover


def read_all(reader: Reader) -> dict[str, Any]:
    """Drive a reader from start to end, accumulating each increment into its initial results.

    Initial results that are lists get extended, other data types are expected to support append().
    """
    results = reader.get_initial()
    with reader:
        while True:
            try:
                increment = reader.read_next()
            except StopIteration:
                break

            if not increment:
                continue

            for name, data in increment.items():
                match results.get(name, None):
                    case None:
                        results[name] = data
                    case list() as accumulated:
                        accumulated.extend(data)
                    case accumulated:
                        accumulated.append(data)

    logging.info(f"Reader {reader.__class__.__name__} is done.")
    return results
