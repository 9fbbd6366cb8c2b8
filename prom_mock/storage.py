"""In-memory time series storage with a label index."""
import hashlib
import logging
import threading
from typing import Dict, List, Sequence, Set

from prom_mock.matchers import LabelMatcher, matches_all
from prom_mock.series import Label, TimeSeries

logger = logging.getLogger(__name__)


def fingerprint(labels: Sequence[Label]) -> int:
    """
    Generate a 64-bit fingerprint for a label set.

    Labels are hashed in the order given, so the same pairs in a
    different order produce a different fingerprint.
    """
    digest = hashlib.md5()
    for label in labels:
        digest.update(label.name.encode())
        digest.update(b"\xff")
        digest.update(label.value.encode())
        digest.update(b"\xfe")
    return int.from_bytes(digest.digest()[:8], "big")


class MemoryStorage:
    """Stores series by fingerprint and indexes label name -> value -> fingerprints."""

    def __init__(self):
        self.series: Dict[int, TimeSeries] = {}
        self.label_index: Dict[str, Dict[str, Set[int]]] = {}

        # Guards both the series map and the label index
        self._lock = threading.RLock()

    def add_series(self, ts: TimeSeries):
        """Add a series, merging its samples if the label set is already stored."""
        fp = fingerprint(ts.labels)

        with self._lock:
            existing = self.series.get(fp)
            if existing is not None:
                for sample in ts.samples:
                    existing.add_sample(sample)
                logger.debug(f"Merged {len(ts.samples)} samples into series {fp:016x}")
                return

            self._update_label_index(ts.labels, fp)
            stored = TimeSeries(list(ts.labels))
            for sample in ts.samples:
                stored.add_sample(sample)
            self.series[fp] = stored
            logger.debug(f"Stored new series {fp:016x} with {len(ts.labels)} labels")

    def _update_label_index(self, labels: Sequence[Label], fp: int):
        """Index every (name, value) pair of a new series."""
        for label in labels:
            values = self.label_index.setdefault(label.name, {})
            values.setdefault(label.value, set()).add(fp)

    def query_series(self, matchers: Sequence[LabelMatcher]) -> List[TimeSeries]:
        """
        Return copies of all series accepted by every matcher.

        An empty matcher list returns every series.
        """
        with self._lock:
            return [
                ts.copy() for ts in self.series.values()
                if matches_all(matchers, ts.labels)
            ]

    def label_names(self) -> List[str]:
        """Get all label names seen so far."""
        with self._lock:
            return list(self.label_index.keys())

    def label_values(self, name: str) -> List[str]:
        """Get all values for a label name, sorted; empty if the name is unknown."""
        with self._lock:
            return sorted(self.label_index.get(name, {}).keys())

    def series_count(self) -> int:
        with self._lock:
            return len(self.series)
