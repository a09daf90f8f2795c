"""
Per-cycle view of one task source, split by completion state.
"""

from dataclasses import dataclass
from typing import Callable, Generic, Iterable, Tuple, TypeVar

T = TypeVar('T')


@dataclass(frozen=True)
class TaskSnapshot(Generic[T]):
    """Tasks visible in one source at the start of a sync cycle.

    Snapshots are rebuilt from the remote on every cycle and never stored.
    """
    incomplete: Tuple[T, ...] = ()
    complete: Tuple[T, ...] = ()

    @classmethod
    def partition(cls, tasks: Iterable[T], is_complete: Callable[[T], bool]) -> "TaskSnapshot[T]":
        incomplete = []
        complete = []
        for task in tasks:
            if is_complete(task):
                complete.append(task)
            else:
                incomplete.append(task)
        return cls(incomplete=tuple(incomplete), complete=tuple(complete))

    def __len__(self) -> int:
        return len(self.incomplete) + len(self.complete)
