"""Frame-ordered collection of aligned onsets."""

from bisect import insort
from typing import Iterable, Iterator, List, Optional

from scorealign.schemas.alignment import Onset


def _key(onset: Onset):
    return onset.frame, onset.label


class OnsetTimeline:
    """Onsets kept sorted by frame; an identical onset is stored once."""

    def __init__(self, onsets: Iterable[Onset] = ()):
        self._onsets: List[Onset] = []
        for onset in onsets:
            self.add(onset)

    def __len__(self) -> int:
        return len(self._onsets)

    def __iter__(self) -> Iterator[Onset]:
        return iter(self._onsets)

    def add(self, onset: Onset) -> None:
        if onset in self._onsets:
            return
        insort(self._onsets, onset, key=_key)

    def remove(self, onset: Onset) -> None:
        self._onsets.remove(onset)

    def replace_all(self, onsets: Iterable[Onset]) -> None:
        self._onsets = []
        for onset in onsets:
            self.add(onset)

    def find(self, label: str) -> Optional[Onset]:
        for onset in self._onsets:
            if onset.label == label:
                return onset
        return None

    def all(self) -> List[Onset]:
        return list(self._onsets)
