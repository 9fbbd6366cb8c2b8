"""Data structures for time series, labels and samples."""
from bisect import bisect_left
from dataclasses import dataclass, field
from typing import Iterable, List


@dataclass(frozen=True, order=True)
class Label:
    """A metric label (name=value pair)."""
    name: str
    value: str


@dataclass(frozen=True)
class Sample:
    """A single sample: timestamp in milliseconds since epoch and value."""
    timestamp: int
    value: float


@dataclass
class TimeSeries:
    """A labelled series of samples kept sorted and unique by timestamp."""
    labels: List[Label]
    samples: List[Sample] = field(default_factory=list)

    @classmethod
    def from_pairs(cls, labels: Iterable, samples: Iterable = ()) -> "TimeSeries":
        """Build a series from (name, value) and (timestamp_ms, value) tuples."""
        ts = cls([Label(name, value) for name, value in labels])
        for timestamp, value in samples:
            ts.add_sample(Sample(int(timestamp), float(value)))
        return ts

    def add_sample(self, sample: Sample):
        """Insert a sample in timestamp order, replacing one at the same timestamp."""
        pos = bisect_left(self.samples, sample.timestamp, key=lambda s: s.timestamp)
        if pos < len(self.samples) and self.samples[pos].timestamp == sample.timestamp:
            self.samples[pos] = sample
        else:
            self.samples.insert(pos, sample)

    def samples_in_range(self, start: int, end: int) -> List[Sample]:
        """Get samples with start <= timestamp <= end."""
        return [s for s in self.samples if start <= s.timestamp <= end]

    def copy(self) -> "TimeSeries":
        return TimeSeries(list(self.labels), list(self.samples))
