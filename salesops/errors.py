"""
Directory failures surfaced by the scope resolver.

A missing record is not an error: it collapses to the Unauthorized outcome.
These exceptions cover the cases that must never be read as a denial.
"""


class DirectoryError(Exception):
    """A directory lookup could not produce a trustworthy answer."""


class AmbiguousRecordError(DirectoryError):
    """More than one row matched a key that must be unique."""

    def __init__(self, table: str, key: str, value, count: int):
        self.table = table
        self.key = key
        self.value = value
        self.count = count
        super().__init__(f"{count} rows in {table} match {key}={value!r}; expected at most one.")


class TransportFailure(DirectoryError):
    """The lookup failed or returned a row that does not fit the record type."""


class StaleResolution(Exception):
    """Raised inside a resolution pass whose epoch has been superseded."""
