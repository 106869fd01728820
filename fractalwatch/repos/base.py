"""Repository protocol shared by the persisted collections."""

from typing import Protocol, TypeVar, runtime_checkable

T = TypeVar("T")


@runtime_checkable
class Repository(Protocol[T]):
    """Storage-agnostic collection of records.

    Reads must reflect the most recent write from the same process.
    """

    def load(self) -> list[T]:
        """Return every stored record, or ``[]`` if the store is unreadable."""
        ...

    def save(self, items: list[T]) -> None:
        """Replace the stored collection wholesale."""
        ...

    def append(self, item: T) -> bool:
        """Add one record.  Returns ``False`` if it was already recorded."""
        ...
