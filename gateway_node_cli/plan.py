import logging
from typing import Iterator, List

log = logging.getLogger(__name__)


class UpdatePlan:
    """
    Ordered, append-only log of the actions taken during one update run.

    Entries are echoed to the logger as they are added so a verbose run
    shows progress live; the same entries are returned verbatim to the
    caller at the end.
    """

    def __init__(self):
        self._steps: List[str] = []

    def add(self, step: str):
        self._steps.append(step)
        log.info(step)

    @property
    def steps(self) -> List[str]:
        """A copy of the entries so far."""
        return list(self._steps)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._steps))

    def __len__(self) -> int:
        return len(self._steps)
