"""Bounded time series of progress samples."""

from collections import deque
from collections.abc import Iterator
from itertools import islice

from pvfilt.sampler import Sample

__all__ = ["DEFAULT_CAPACITY", "TimeSeries"]

DEFAULT_CAPACITY = 1000


class TimeSeries:
    """Append-only sample store with FIFO eviction.

    Samples are appended as they are produced, so arrival order is also
    timestamp order. Not thread-safe: the owner serialises access.
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self._samples: deque[Sample] = deque(maxlen=capacity)

    @property
    def capacity(self) -> int:
        return self._samples.maxlen  # type: ignore[return-value]

    def append(self, sample: Sample):
        # deque with maxlen drops the oldest entry on overflow
        self._samples.append(sample)

    def latest(self) -> Sample | None:
        """Newest sample, or None when nothing has been recorded yet."""
        return self._samples[-1] if self._samples else None

    def first(self) -> Sample | None:
        return self._samples[0] if self._samples else None

    def window(
        self,
        last: int | None = None,
        duration: float | None = None,
        now: float | None = None,
    ) -> list[Sample]:
        """Return recent samples in arrival order.

        Args:
            last: Keep at most this many of the newest samples
            duration: Keep only samples no older than this many seconds
            now: Reference time for duration (default: newest timestamp)

        Both limits apply together. Only the selected tail is walked and copied.
        """
        if not self._samples:
            return []
        if last is not None and last <= 0:
            return []
        newest_first = reversed(self._samples)
        if last is not None:
            newest_first = islice(newest_first, last)
        if duration is not None:
            ref = self._samples[-1].timestamp if now is None else now
            cutoff = ref - duration
            out = []
            for s in newest_first:
                if s.timestamp < cutoff:
                    break
                out.append(s)
        else:
            out = list(newest_first)
        out.reverse()
        return out

    def __len__(self) -> int:
        return len(self._samples)

    def __bool__(self) -> bool:
        return bool(self._samples)

    def __iter__(self) -> Iterator[Sample]:
        return iter(self._samples)
